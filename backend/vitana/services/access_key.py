# Overview: NFCe access key (chave de acesso) composition and modulo-11 check digit.

from __future__ import annotations

import re
import secrets

MODELO_NFCE = "65"
MAX_NUMERO = 999_999_999  # nNF has nine digits

# IBGE state codes (cUF)
UF_CODES = {
    "RO": "11", "AC": "12", "AM": "13", "RR": "14", "PA": "15", "AP": "16", "TO": "17",
    "MA": "21", "PI": "22", "CE": "23", "RN": "24", "PB": "25", "PE": "26", "AL": "27",
    "SE": "28", "BA": "29", "MG": "31", "ES": "32", "RJ": "33", "SP": "35", "PR": "41",
    "SC": "42", "RS": "43", "MS": "50", "MT": "51", "GO": "52", "DF": "53",
}


class AccessKeyError(ValueError):
    """Malformed access key component."""


def uf_code(uf: str) -> str:
    try:
        return UF_CODES[uf.upper()]
    except KeyError:
        raise AccessKeyError(f"Unknown UF: {uf}")


def modulo11_digit(digits: str) -> int:
    """
    Weighted modulo-11 check digit.

    Weights 2..9 are applied from the rightmost digit leftwards, cycling.
    remainder < 2 -> 0, otherwise 11 - remainder.
    """
    if not digits or not digits.isdigit():
        raise AccessKeyError("check digit input must be numeric")
    total = 0
    weight = 2
    for ch in reversed(digits):
        total += int(ch) * weight
        weight = 2 if weight == 9 else weight + 1
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def generate_codigo_numerico(numero: int, randbelow=secrets.randbelow) -> str:
    """8-digit random cNF; must differ from the document number (nNF)."""
    own = f"{numero % 10**8:08d}"
    while True:
        code = f"{randbelow(10**8):08d}"
        if code != own:
            return code


def build_pre_key(
    *,
    cuf: str,
    yymm: str,
    cnpj: str,
    serie: int,
    numero: int,
    tipo_emissao: int,
    codigo_numerico: str,
    modelo: str = MODELO_NFCE,
) -> str:
    cnpj_digits = re.sub(r"\D", "", cnpj)
    if len(cuf) != 2 or not cuf.isdigit():
        raise AccessKeyError("cUF must have 2 digits")
    if len(yymm) != 4 or not yymm.isdigit():
        raise AccessKeyError("AAMM must have 4 digits")
    if len(cnpj_digits) != 14:
        raise AccessKeyError("CNPJ must have 14 digits")
    if not 0 <= serie <= 999:
        raise AccessKeyError("serie out of range")
    if not 1 <= numero <= MAX_NUMERO:
        raise AccessKeyError("numero out of range")
    if tipo_emissao not in range(1, 10):
        raise AccessKeyError("tpEmis must be a single digit")
    if len(codigo_numerico) != 8 or not codigo_numerico.isdigit():
        raise AccessKeyError("cNF must have 8 digits")

    pre_key = f"{cuf}{yymm}{cnpj_digits}{modelo}{serie:03d}{numero:09d}{tipo_emissao}{codigo_numerico}"
    return pre_key


def build_access_key(**components) -> tuple[str, int]:
    """Returns (44-digit key, check digit)."""
    pre_key = build_pre_key(**components)
    digit = modulo11_digit(pre_key)
    return f"{pre_key}{digit}", digit


def verify_access_key(key: str) -> bool:
    key = re.sub(r"\s", "", key or "")
    if len(key) != 44 or not key.isdigit():
        return False
    return modulo11_digit(key[:43]) == int(key[43])


def parse_access_key(key: str) -> dict:
    key = re.sub(r"\s", "", key or "")
    if len(key) != 44 or not key.isdigit():
        raise AccessKeyError("access key must have 44 digits")
    return {
        "cuf": key[0:2],
        "yymm": key[2:6],
        "cnpj": key[6:20],
        "modelo": key[20:22],
        "serie": int(key[22:25]),
        "numero": int(key[25:34]),
        "tipo_emissao": int(key[34]),
        "codigo_numerico": key[35:43],
        "digito_verificador": int(key[43]),
        "valid": verify_access_key(key),
    }
