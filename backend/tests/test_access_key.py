# Overview: Pytest coverage for NFCe access key composition and the modulo-11 digit.

import pytest

from vitana.services.access_key import (
    AccessKeyError,
    build_access_key,
    build_pre_key,
    generate_codigo_numerico,
    modulo11_digit,
    parse_access_key,
    uf_code,
    verify_access_key,
)

# Worked example from the NF-e integration manual (DV 5)
MANUAL_KEY = "52060433009911002506550120000007800267301615"


def _components(**overrides):
    fields = {
        "cuf": "35",
        "yymm": "2405",
        "cnpj": "11.222.333/0001-81",
        "serie": 1,
        "numero": 42,
        "tipo_emissao": 1,
        "codigo_numerico": "12345678",
    }
    fields.update(overrides)
    return fields


class TestModulo11:
    def test_manual_example(self):
        assert modulo11_digit(MANUAL_KEY[:43]) == 5
        assert verify_access_key(MANUAL_KEY)

    def test_low_remainders_map_to_zero(self):
        # 1*2 = 2 -> remainder 2 -> 9; 0 -> remainder 0 -> 0; "6" -> 12 % 11 = 1 -> 0
        assert modulo11_digit("1") == 9
        assert modulo11_digit("0") == 0
        assert modulo11_digit("6") == 0

    def test_weights_cycle_after_nine(self):
        # Nine ones: weights 2..9 then 2 again -> 44 + 2 = 46 -> remainder 2 -> 9
        assert modulo11_digit("1" * 9) == 9

    def test_rejects_non_digits(self):
        with pytest.raises(AccessKeyError):
            modulo11_digit("12a4")


class TestAccessKey:
    def test_layout(self):
        key, digit = build_access_key(**_components())
        assert len(key) == 44
        assert key.isdigit()
        assert key[:2] == "35"
        assert key[2:6] == "2405"
        assert key[6:20] == "11222333000181"
        assert key[20:22] == "65"
        assert key[22:25] == "001"
        assert key[25:34] == "000000042"
        assert key[34] == "1"
        assert key[35:43] == "12345678"
        assert int(key[43]) == digit

    def test_check_digit_recomputes(self):
        key, _ = build_access_key(**_components(numero=987654321, serie=999, tipo_emissao=9))
        assert modulo11_digit(key[:43]) == int(key[43])
        assert verify_access_key(key)

    def test_tampered_key_fails_verification(self):
        key, _ = build_access_key(**_components())
        wrong_digit = (int(key[43]) + 1) % 10
        assert not verify_access_key(key[:43] + str(wrong_digit))

    def test_verify_rejects_wrong_length(self):
        assert not verify_access_key(MANUAL_KEY[:43])
        assert not verify_access_key("")

    def test_verify_ignores_grouping_spaces(self):
        grouped = " ".join(MANUAL_KEY[i:i + 4] for i in range(0, 44, 4))
        assert verify_access_key(grouped)

    @pytest.mark.parametrize("override", [
        {"cuf": "3"},
        {"yymm": "245"},
        {"cnpj": "123"},
        {"serie": 1000},
        {"numero": 0},
        {"numero": 1_000_000_000},
        {"tipo_emissao": 10},
        {"codigo_numerico": "1234"},
    ])
    def test_invalid_components(self, override):
        with pytest.raises(AccessKeyError):
            build_pre_key(**_components(**override))

    def test_parse(self):
        fields = parse_access_key(MANUAL_KEY)
        assert fields["cuf"] == "52"
        assert fields["yymm"] == "0604"
        assert fields["cnpj"] == "33009911002506"
        assert fields["modelo"] == "55"
        assert fields["serie"] == 12
        assert fields["numero"] == 780
        assert fields["tipo_emissao"] == 0
        assert fields["codigo_numerico"] == "26730161"
        assert fields["digito_verificador"] == 5
        assert fields["valid"] is True

    def test_parse_rejects_garbage(self):
        with pytest.raises(AccessKeyError):
            parse_access_key("not a key")


class TestCodigoNumerico:
    def test_is_eight_digits(self):
        code = generate_codigo_numerico(1)
        assert len(code) == 8 and code.isdigit()

    def test_never_equals_document_number(self):
        draws = iter([42, 42, 7])
        code = generate_codigo_numerico(42, randbelow=lambda _: next(draws))
        assert code == "00000007"


class TestUfCode:
    def test_known(self):
        assert uf_code("sp") == "35"
        assert uf_code("DF") == "53"

    def test_unknown(self):
        with pytest.raises(AccessKeyError):
            uf_code("XX")
