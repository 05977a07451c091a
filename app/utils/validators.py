"""
Brazilian document and phone number validation.
"""
import re


def only_digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def validate_cpf(cpf: str) -> bool:
    """
    Validate a CPF (taxpayer id). Punctuation is ignored.

    The last two digits are mod-11 check digits over the first nine
    (and ten) digits. Sequences of one repeated digit are rejected.
    """
    digits = only_digits(cpf)
    if len(digits) != 11 or len(set(digits)) == 1:
        return False

    numbers = [int(d) for d in digits]
    for position in (9, 10):
        total = sum(n * weight for n, weight in zip(numbers[:position], range(position + 1, 1, -1)))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != numbers[position]:
            return False
    return True


def validate_phone(phone: str) -> bool:
    """
    Validate a Brazilian phone number: area code plus 8 digits (landline)
    or 9 digits starting with 9 (mobile).
    """
    digits = only_digits(phone)
    if len(digits) not in (10, 11):
        return False

    area_code = int(digits[:2])
    if area_code < 10 or area_code > 99:
        return False

    if len(digits) == 11 and digits[2] != "9":
        return False
    return True


def format_cpf(cpf: str) -> str:
    digits = only_digits(cpf)
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
