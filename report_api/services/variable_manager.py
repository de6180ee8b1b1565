"""Variable discovery, typing and display formatting for report data.

Types are inferred heuristically from a single sample row, so a numeric ID
whose column name happens to contain "total" is classified as currency.
That is a known limitation of sampling one row, not something this module
tries to correct.
"""

import enum
import math
import numbers
import operator
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional, Union

import structlog
from babel.dates import format_date
from babel.numbers import format_currency, format_decimal

logger = structlog.get_logger()

# Numeric columns whose name contains one of these are money
CURRENCY_KEYWORDS = ("price", "amount", "revenue", "fee", "charge", "total", "money")

COMPARISONS = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
    "!==": operator.ne,
}

DEFAULT_TRUE_TEXT = "Có"
DEFAULT_FALSE_TEXT = "Không"

Row = dict[str, Any]


class FieldType(str, enum.Enum):
    """Semantic type of a report variable."""

    STRING = "string"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    BOOLEAN = "boolean"


@dataclass
class DiscoveredVariable:
    """A variable available to template authors."""

    name: str
    type: FieldType
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type.value, "description": self.description}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def parse_date(value: Any) -> Optional[Union[date, datetime]]:
    """Parse a date-like value, returning None when it is not one."""
    if isinstance(value, (datetime, date)):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as stored by the web front-end
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def infer_type(key: str, value: Any) -> FieldType:
    """Classify one sample value.

    bool is checked before numbers because bool is an int subclass.
    """
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, numbers.Number):
        lowered = key.lower()
        if any(keyword in lowered for keyword in CURRENCY_KEYWORDS):
            return FieldType.CURRENCY
        return FieldType.NUMBER
    if isinstance(value, (datetime, date)):
        return FieldType.DATE
    if isinstance(value, str) and len(value) > 8 and parse_date(value) is not None:
        return FieldType.DATE
    return FieldType.STRING


def field_type_from_sql(sql_type: str) -> FieldType:
    """Map a declared SQL column type (from RETURNS TABLE) to a FieldType."""
    lowered = (sql_type or "").lower()
    if "text" in lowered or "char" in lowered:
        return FieldType.STRING
    if any(t in lowered for t in ("int", "decimal", "numeric", "real", "double")):
        return FieldType.NUMBER
    if "timestamp" in lowered or "date" in lowered:
        return FieldType.DATE
    if "bool" in lowered:
        return FieldType.BOOLEAN
    return FieldType.STRING


def _normalize_locale(locale: str) -> str:
    # Accept BCP 47 style "vi-VN" as well as Babel's "vi_VN"
    return str(locale).replace("-", "_")


def _parse_literal(raw: str) -> Union[float, str]:
    """Numeric literal if it parses as a finite number, else unquoted text."""
    try:
        number = float(raw)
    except ValueError:
        return raw.replace('"', "").replace("'", "")
    if not math.isfinite(number):
        return raw.replace('"', "").replace("'", "")
    return number


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Number)


def _to_number(text: str) -> float:
    # Non-numeric text becomes NaN, which is never ordered or equal
    if not text.strip():
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def _coerce_mixed(left: Any, right: Any) -> tuple[Any, Any]:
    if isinstance(left, str) and _is_number(right):
        return _to_number(left), right
    if isinstance(right, str) and _is_number(left):
        return left, _to_number(right)
    return left, right


def compare_values(left: Any, op: str, right: Any) -> bool:
    """Compare two report values the way template authors expect.

    Numeric strings compare as numbers against numbers. For the ordering
    operators a missing value (None) counts as 0. Values of unrelated types
    are never ordered, so the comparison is False instead of raising.
    Unknown operators are False.
    """
    compare = COMPARISONS.get(op)
    if compare is None:
        return False

    if op in ("==", "===", "!=", "!=="):
        left, right = _coerce_mixed(left, right)
        return bool(compare(left, right))

    left = 0 if left is None else left
    right = 0 if right is None else right
    left, right = _coerce_mixed(left, right)
    try:
        return bool(compare(left, right))
    except (TypeError, ArithmeticError):
        return False


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without coercion: 1 and True differ, "1" and 1 differ."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


class VariableManagerService:
    """Infers, validates and formats report variables.

    One instance is created at application startup and shared; it holds no
    per-request state.
    """

    def __init__(self, locale: str = "vi_VN", currency: str = "VND"):
        self.locale = _normalize_locale(locale)
        self.currency = currency

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def format_value(self, value: Any, field_type: Union[FieldType, str], **options: Any) -> Any:
        """Format a value for display.

        Args:
            value: Raw value from a result row
            field_type: FieldType (or its string value)
            **options: locale, currency, true_text, false_text, date_format

        Returns:
            Display string. None becomes "", an unparseable date is returned
            unchanged, and any formatting error falls back to str(value).
        """
        if value is None:
            return ""

        locale = _normalize_locale(options.get("locale") or self.locale)

        try:
            kind = FieldType(field_type)

            if kind == FieldType.CURRENCY:
                return format_currency(
                    value,
                    options.get("currency") or self.currency,
                    locale=locale,
                )

            if kind == FieldType.DATE:
                parsed = parse_date(value)
                if parsed is None:
                    return value
                return format_date(
                    parsed,
                    format=options.get("date_format") or "dd/MM/yyyy",
                    locale=locale,
                )

            if kind == FieldType.NUMBER:
                return format_decimal(value, format="#,##0.##", locale=locale)

            if kind == FieldType.BOOLEAN:
                if value:
                    return options.get("true_text") or DEFAULT_TRUE_TEXT
                return options.get("false_text") or DEFAULT_FALSE_TEXT

            return str(value)
        except Exception as e:
            logger.warning(
                "Formatting error",
                value=str(value),
                field_type=str(field_type),
                error=str(e),
            )
            return str(value)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_variables(self, sample: Union[Row, list[Row], None]) -> list[DiscoveredVariable]:
        """Infer one variable per column of a sample row (or first of a list)."""
        if not sample:
            return []

        row = sample[0] if isinstance(sample, list) else sample
        return [
            DiscoveredVariable(
                name=key,
                type=infer_type(key, value),
                description=f"Tự động nhận diện từ dữ liệu ({key})",
            )
            for key, value in row.items()
        ]

    def validate_variables(self, data: Row, schema: list[dict[str, Any]]) -> ValidationResult:
        """Check required fields declared in `schema` are present in `data`."""
        errors = []
        for rule in schema:
            if rule.get("required") and data.get(rule["name"]) is None:
                errors.append(f"Thiếu trường bắt buộc: {rule['name']}")
        return ValidationResult(is_valid=not errors, errors=errors)

    # ------------------------------------------------------------------
    # Conditional variables
    # ------------------------------------------------------------------

    def process_conditional_variables(
        self,
        data: Union[Row, list[Row], None],
        rules: Optional[list[dict[str, Any]]] = None,
    ) -> Union[Row, list[Row], None]:
        """Add derived boolean fields to each row.

        Each rule is {"name": ..., "condition": "<field> <operator> <value>"}.
        Conditions that do not split into exactly three space-separated
        tokens are skipped. Returns a list for a list input and a single row
        for a single-row input.
        """
        if not data or not rules:
            return data

        rows = data if isinstance(data, list) else [data]
        processed = [self._apply_rules(row, rules) for row in rows]

        return processed if isinstance(data, list) else processed[0]

    def _apply_rules(self, row: Row, rules: list[dict[str, Any]]) -> Row:
        result = dict(row)

        for rule in rules:
            name = rule.get("name")
            condition = rule.get("condition")
            if not name or not condition:
                continue

            parts = condition.split(" ")
            if len(parts) != 3:
                continue

            field_name, op, raw_value = parts
            result[name] = compare_values(row.get(field_name), op, _parse_literal(raw_value))

        return result

    # ------------------------------------------------------------------
    # Designer help
    # ------------------------------------------------------------------

    def get_help_documentation(self) -> dict[str, list[dict[str, str]]]:
        """Helpers and system variables available inside templates."""
        return {
            "helpers": [
                {
                    "name": "vnCurrency",
                    "usage": "{{vnCurrency value}}",
                    "description": "Định dạng số thành tiền VND (VD: 1.000.000 ₫)",
                    "example": "{{vnCurrency total_amount}}",
                },
                {
                    "name": "vnDate",
                    "usage": "{{vnDate value}}",
                    "description": "Định dạng ngày dd/MM/yyyy",
                    "example": "{{vnDate move_in_date}}",
                },
                {
                    "name": "vnNumber",
                    "usage": "{{vnNumber value}}",
                    "description": "Số có dấu phân cách hàng nghìn (VD: 1.234,56)",
                    "example": "{{vnNumber quantity}}",
                },
                {
                    "name": "eq / gt / lt",
                    "usage": '{{#if (eq status "PAID")}}...{{/if}}',
                    "description": "So sánh bằng (eq), lớn hơn (gt), nhỏ hơn (lt)",
                    "example": "{{#if (gt total 1000000)}}Khách VIP{{/if}}",
                },
                {
                    "name": "add",
                    "usage": "{{add a b}}",
                    "description": "Cộng hai số (VD: số thứ tự @index + 1)",
                    "example": "{{add @index 1}}",
                },
                {
                    "name": "json",
                    "usage": "{{json value}}",
                    "description": "In dữ liệu dạng JSON để gỡ lỗi",
                    "example": "{{json data}}",
                },
            ],
            "systemVariables": [
                {"name": "metadata.templateName", "description": "Tên mẫu báo cáo"},
                {"name": "metadata.generatedAt", "description": "Thời điểm xuất báo cáo"},
                {"name": "metadata.userName", "description": "Người xuất báo cáo"},
                {"name": "metadata.totalCount", "description": "Tổng số dòng dữ liệu"},
                {"name": "data", "description": "Danh sách tất cả các dòng dữ liệu"},
            ],
        }
