# Copyright 2021 Datawire. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License

######
# Field-path validation errors.
#
# Validators build these as structured records (type, path, bad value,
# detail) and keep them in an ErrorList. Nothing gets formatted into a
# string until a Condition is made out of it, and the format matches what
# Kubernetes users already see from the API server:
#
#     tls.certificateRefs[0].kind: Unsupported value: "Foo": supported values: "Secret"

import enum
from typing import Any, Iterable, List, Optional, Sequence

from ..errors import GraphError
from ..utils import dump_json


@enum.unique
class ErrorType(enum.Enum):
    REQUIRED = "Required value"
    INVALID = "Invalid value"
    NOT_SUPPORTED = "Unsupported value"
    FORBIDDEN = "Forbidden"
    TOO_MANY = "Too many"

    def __str__(self) -> str:
        return self.value


class Path:
    """
    A path to a field, e.g. spec.snippets[1].context. Paths are immutable:
    child() and index() hand back new ones.
    """

    def __init__(self, *elements: str) -> None:
        self.elements: List[str] = []

        for el in elements:
            self.elements.extend(self._split(el))

    @staticmethod
    def _split(element: str) -> List[str]:
        # Allow Path("spec.snippets") as shorthand for Path("spec", "snippets").
        return [part for part in element.split(".") if part] if element else []

    def child(self, name: str, *more: str) -> "Path":
        p = Path()
        p.elements = self.elements + self._split(name)

        for m in more:
            p.elements.extend(self._split(m))

        return p

    def index(self, i: int) -> "Path":
        p = Path()
        p.elements = list(self.elements)

        if p.elements:
            p.elements[-1] = f"{p.elements[-1]}[{i}]"
        else:
            p.elements.append(f"[{i}]")

        return p

    def __str__(self) -> str:
        return ".".join(self.elements)

    def __repr__(self) -> str:
        return f"<Path {self}>"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Path) and self.elements == other.elements

    def __hash__(self) -> int:
        return hash(tuple(self.elements))


def format_value(value: Any) -> str:
    if isinstance(value, enum.Enum):
        value = value.value

    if isinstance(value, bool) or value is None:
        return dump_json(value)

    if isinstance(value, (int, float)):
        return str(value)

    if isinstance(value, str):
        return dump_json(value)

    try:
        return dump_json(value)
    except TypeError:
        return repr(value)


class FieldError(GraphError):
    """
    A single validation failure for a single field.
    """

    type: ErrorType
    path: Path
    bad_value: Any
    detail: str

    def __init__(self, type: ErrorType, path: Path, bad_value: Any = None, detail: str = "") -> None:
        self.type = type
        self.path = path
        self.bad_value = bad_value
        self.detail = detail

        super().__init__(self.error_string())

    def body(self) -> str:
        if self.type in (ErrorType.REQUIRED, ErrorType.FORBIDDEN):
            s = str(self.type)
        else:
            s = f"{self.type}: {format_value(self.bad_value)}"

        if self.detail:
            s += f": {self.detail}"

        return s

    def error_string(self) -> str:
        path = str(self.path)

        if path:
            return f"{path}: {self.body()}"

        return self.body()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldError):
            return NotImplemented

        return (
            self.type == other.type
            and self.path == other.path
            and self.detail == other.detail
            and self.bad_value == other.bad_value
        )

    def __hash__(self) -> int:
        return hash((self.type, self.path, self.detail))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.error_string()}>"


class UnsupportedValueError(FieldError):
    """
    A value outside of a fixed set of legal values.
    """

    supported: List[str]

    def __init__(self, path: Path, bad_value: Any, supported: Sequence[Any]) -> None:
        self.supported = [s.value if isinstance(s, enum.Enum) else str(s) for s in supported]

        detail = ""

        if self.supported:
            detail = "supported values: " + ", ".join(dump_json(s) for s in self.supported)

        super().__init__(ErrorType.NOT_SUPPORTED, path, bad_value, detail)


def invalid(path: Path, value: Any, detail: str) -> FieldError:
    return FieldError(ErrorType.INVALID, path, value, detail)


def required(path: Path, detail: str) -> FieldError:
    return FieldError(ErrorType.REQUIRED, path, None, detail)


def forbidden(path: Path, detail: str) -> FieldError:
    return FieldError(ErrorType.FORBIDDEN, path, None, detail)


def not_supported(path: Path, value: Any, supported: Sequence[Any]) -> UnsupportedValueError:
    return UnsupportedValueError(path, value, supported)


def too_many(path: Path, actual: int, maximum: int) -> FieldError:
    return FieldError(ErrorType.TOO_MANY, path, actual, f"must have at most {maximum} items")


class ErrorList(list):
    """
    An ordered list of FieldErrors. to_aggregate() is the only place that
    decides how several errors read as one message.
    """

    def __init__(self, errors: Optional[Iterable[FieldError]] = None) -> None:
        super().__init__(errors or [])

    def messages(self) -> List[str]:
        # Keep the first occurrence of each message, in order.
        seen = set()
        msgs = []

        for err in self:
            msg = str(err)

            if msg not in seen:
                seen.add(msg)
                msgs.append(msg)

        return msgs

    def to_aggregate(self) -> Optional[str]:
        msgs = self.messages()

        if not msgs:
            return None

        if len(msgs) == 1:
            return msgs[0]

        return "[" + ", ".join(msgs) + "]"
