"""
Unit tests for CPF and phone validation
"""
import pytest
from app.utils.validators import format_cpf, only_digits, validate_cpf, validate_phone


@pytest.mark.unit
class TestCPF:

    @pytest.mark.parametrize("cpf", ["529.982.247-25", "52998224725", "111.444.777-35"])
    def test_valid(self, cpf):
        assert validate_cpf(cpf) is True

    @pytest.mark.parametrize("cpf", [
        "529.982.247-24",  # wrong second check digit
        "529.982.247-15",  # wrong first check digit
        "111.111.111-11",  # repeated digits
        "000.000.000-00",
        "5299822472",      # too short
        "529982247250",    # too long
        "",
    ])
    def test_invalid(self, cpf):
        assert validate_cpf(cpf) is False

    def test_format(self):
        assert format_cpf("52998224725") == "529.982.247-25"
        assert format_cpf("529.982.247-25") == "529.982.247-25"


@pytest.mark.unit
class TestPhone:

    @pytest.mark.parametrize("phone", [
        "(11) 98765-4321",
        "11987654321",
        "(21) 3333-4444",
        "2133334444",
    ])
    def test_valid(self, phone):
        assert validate_phone(phone) is True

    @pytest.mark.parametrize("phone", [
        "(11) 88765-4321",  # 11 digits without the mobile 9
        "(01) 3333-4444",   # area code below 10
        "12345",
        "119876543210",
        "",
    ])
    def test_invalid(self, phone):
        assert validate_phone(phone) is False

    def test_only_digits(self):
        assert only_digits("(11) 98765-4321") == "11987654321"
        assert only_digits(None) == ""
