from fkslice.output.json_out import JSONGenerator

__all__ = [
    "JSONGenerator",
]
