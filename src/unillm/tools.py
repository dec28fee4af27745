import copy
import functools
import inspect
import json
import logging
import re
from typing import Any, Callable, Iterable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Parameters filled in by the runner, never shown to the model.
_INJECTED_PARAMS = {"context"}

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
}


class ToolCallResult(BaseModel):
    tool_name: str
    output: Any = None


def _json_type(annotation: Any) -> str:
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(origin or annotation, "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Pull per-parameter descriptions out of a Google, reST or NumPy
    style docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}

    descriptions: dict[str, str] = {}

    for match in re.finditer(r"^:param\s+(\w+):\s*(.+)$", doc, re.MULTILINE):
        descriptions[match.group(1)] = match.group(2).strip()
    if descriptions:
        return descriptions

    lines = doc.splitlines()
    for i, line in enumerate(lines):
        header = line.strip()
        if header in ("Args:", "Arguments:", "Parameters:"):
            return _parse_google_section(lines[i + 1:])
        if header == "Parameters" and i + 1 < len(lines) and set(lines[i + 1].strip()) == {"-"}:
            return _parse_numpy_section(lines[i + 2:])
    return {}


def _parse_google_section(lines: list[str]) -> dict[str, str]:
    descriptions: dict[str, list[str]] = {}
    current = None
    base_indent = None
    for line in lines:
        if not line.strip():
            break
        indent = len(line) - len(line.lstrip())
        if base_indent is None:
            base_indent = indent
        if indent < base_indent:
            break
        match = re.match(r"^(\w+)(\s*\([^)]*\))?:\s*(.*)$", line.strip())
        if indent == base_indent and match:
            current = match.group(1)
            descriptions[current] = [match.group(3).strip()]
        elif current is not None:
            descriptions[current].append(line.strip())
    return {k: "\n".join(v).strip() for k, v in descriptions.items()}


def _parse_numpy_section(lines: list[str]) -> dict[str, str]:
    descriptions: dict[str, list[str]] = {}
    current = None
    for line in lines:
        if not line.strip():
            continue
        if not line.startswith((" ", "\t")):
            if set(line.strip()) == {"-"}:
                break
            current = line.split(":")[0].strip()
            descriptions[current] = []
        elif current is not None:
            descriptions[current].append(line.strip())
    return {k: "\n".join(v).strip() for k, v in descriptions.items()}


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        if name in _INJECTED_PARAMS:
            continue
        annotation = param.annotation
        properties[name] = {
            "type": "string" if annotation is inspect.Parameter.empty else _json_type(annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    return {"type": "object", "properties": properties, "required": required}, required


class Tool(BaseModel):
    """A Python callable exposed to the model as a function tool."""

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict = Field(default_factory=dict)
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """OpenAI-style function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def model_dump_json(self, **kwargs):
        return json.dumps(self.model_dump())

    def bind(self, **bound: Any) -> "Tool":
        """Fix some arguments and hide them from the model.

        Returns a new tool; this one is left untouched.
        """
        schema = copy.deepcopy(self.parameters_schema)
        for key in bound:
            schema.get("properties", {}).pop(key, None)
        schema["required"] = [r for r in schema.get("required", []) if r not in bound]
        return Tool(
            func=functools.partial(self.func, **bound),
            name=self.name,
            description=self.description,
            parameters_schema=schema,
        )

    async def __call__(self, **kwargs) -> ToolCallResult:
        output = self.func(**kwargs)
        if inspect.isawaitable(output):
            output = await output
        return ToolCallResult(tool_name=self.name, output=output)


def tool(func: Callable | None = None, *, name: str | None = None, description: str | None = None):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with arguments
    (``@tool(name="search", description="...")``).
    """
    def wrap(f: Callable) -> Tool:
        schema, _ = _build_parameters_schema(f)
        doc = inspect.getdoc(f) or ""
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else doc.split("\n\n")[0].strip(),
            parameters_schema=schema,
        )

    if func is not None:
        return wrap(func)
    return wrap


class ToolRegistry:
    """The set of tools offered in one request, looked up by name."""

    def __init__(self, tools: Iterable[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.add(t)

    def add(self, t: Tool) -> None:
        self._tools[t.name] = t

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> set[str]:
        return set(self._tools)

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    def __iter__(self):
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __bool__(self) -> bool:
        return bool(self._tools)


_TAGGED = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)
_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_tool_calls_from_text(text: str, tool_names: Iterable[str]) -> list[tuple[str, str]]:
    """Recover tool calls a model wrote as plain text.

    Recognised shapes are ``<tool_call>{...}</tool_call>`` tags, fenced
    ```json blocks, and a reply that is nothing but a JSON object (or list
    of objects) with ``name`` and ``arguments``/``parameters`` keys.  Only
    names in *tool_names* count.

    Returns:
        ``(name, arguments_json)`` pairs in order of appearance.
    """
    names = set(tool_names)
    if not text or not names:
        return []

    candidates = _TAGGED.findall(text) or _FENCED.findall(text) or [text.strip()]
    calls = []
    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        for item in payload if isinstance(payload, list) else [payload]:
            call = _as_call(item, names)
            if call is not None:
                calls.append(call)
    return calls


def _as_call(item: Any, names: set[str]) -> tuple[str, str] | None:
    if not isinstance(item, dict):
        return None
    if isinstance(item.get("function"), dict):
        item = item["function"]
    name = item.get("name")
    if name not in names:
        return None
    arguments = item.get("arguments", item.get("parameters", {}))
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    logger.debug("Recovered tool call %s from text", name)
    return name, arguments


class LLMRecoverableError(Exception):
    """Raised by a tool to send its message back to the model as a normal
    (non-error) result, so the model can correct itself and retry."""


def as_registry(tools: "ToolRegistry | Iterable[Tool] | None") -> ToolRegistry:
    if isinstance(tools, ToolRegistry):
        return tools
    return ToolRegistry(tools)
