import jsonschema

from tokenstream.tools.base import ToolSpecification, normalize_schema


class ToolValidator:
    @staticmethod
    def validate(spec: ToolSpecification, arguments: dict) -> tuple[bool, str | None]:
        if not spec.parameters:
            return True, None
        try:
            jsonschema.validate(
                instance=arguments,
                schema=normalize_schema(spec.parameters),
            )
            return True, None
        except jsonschema.ValidationError as e:
            return False, str(e.message)
