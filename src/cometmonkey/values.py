"""
Smart value generation for form fields.

Field semantics inferred from naming conventions beat the raw HTML type:
an ``<input type="text" name="email">`` still gets an email-shaped value.
Values are fixed, realistic and non-destructive so runs are reproducible.
"""

from __future__ import annotations

# First match wins, in this order.
KEYWORD_VALUES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("email", "mail"), "test@example.com"),
    (("password", "pass"), "SecurePass123!@#"),
    (("phone", "tel"), "+1 (555) 123-4567"),
    (("date", "birthday"), "01/01/2024"),
    (("url", "website"), "https://example.com"),
    (("card", "credit"), "4111111111111111"),
)

NUMBER_VALUE = "42"
CHECKBOX_VALUE = "on"
DEFAULT_VALUE = "Test Value"

# Input types that are activated rather than typed into.
CHECKABLE_TYPES = frozenset({"checkbox", "radio"})

# Input types that carry no user-entered value.
NON_FILLABLE_TYPES = frozenset({"hidden", "submit", "button", "reset", "image", "file"})


def generate_smart_value(
    input_type: str | None = "",
    placeholder: str | None = "",
    name: str | None = "",
) -> str:
    """
    Infer a plausible value for a form field from its hints.

    Args:
        input_type: HTML input type
        placeholder: Placeholder text
        name: Field name attribute

    Returns:
        Value to enter; ``CHECKBOX_VALUE`` for checkboxes, which callers
        activate instead of typing into
    """
    input_type = (input_type or "").lower()
    combined = f"{input_type} {placeholder or ''} {name or ''}".lower()

    for keywords, value in KEYWORD_VALUES:
        if any(keyword in combined for keyword in keywords):
            return value

    if input_type == "number":
        return NUMBER_VALUE
    if input_type == "checkbox":
        return CHECKBOX_VALUE
    return DEFAULT_VALUE


def is_checkable(input_type: str | None) -> bool:
    return (input_type or "").lower() in CHECKABLE_TYPES


def is_fillable(input_type: str | None) -> bool:
    return (input_type or "").lower() not in NON_FILLABLE_TYPES
