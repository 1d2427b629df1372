# testes/test_utils.py

from datetime import date, datetime

import pytest

from erros import FormatError
from extratores.utils import (
    data_tolerante, decodificar_texto, formatar_cep, formatar_cnpj, formatar_cpf, formatar_data_br, formatar_valor_br,
    numero_tolerante, parse_data_br, parse_data_hora, parse_numero, parse_valor_br,
)


@pytest.mark.parametrize("valor", [0.0, 1.5, 1234.56, 1000000.0, 987654321.99, -42.1, -1234.5])
def test_valor_br_ida_e_volta(valor):
    assert parse_valor_br(formatar_valor_br(valor)) == pytest.approx(valor)


def test_formatacao_brasileira():
    assert formatar_valor_br(1234.56) == "1.234,56"
    assert formatar_valor_br(0.5) == "0,50"
    assert parse_valor_br("R$ 1.234,56") == pytest.approx(1234.56)


def test_parse_numero_aceita_ponto_decimal_dos_xmls():
    assert parse_numero("1000.00") == pytest.approx(1000.0)
    assert parse_numero("1.000,00") == pytest.approx(1000.0)
    assert parse_numero("1,000.50") == pytest.approx(1000.5)
    assert parse_numero(3) == 3.0


@pytest.mark.parametrize("texto", ["abc", "1,2,3x", "", None])
def test_valor_invalido_gera_format_error(texto):
    with pytest.raises(FormatError):
        parse_valor_br(texto)


def test_numero_tolerante_registra_falha():
    falhas = []
    assert numero_tolerante("xx", "det[1].vProd", falhas) == 0.0
    assert numero_tolerante("", "det[1].vUnCom", falhas) == 0.0
    assert numero_tolerante(None, "det[1].qCom", falhas) == 0.0
    assert len(falhas) == 1
    assert falhas[0].campo == "det[1].vProd"
    assert falhas[0].code == "FORMAT_ERROR"


def test_datas():
    assert parse_data_br("31/01/2024") == date(2024, 1, 31)
    assert parse_data_br("31012024") == date(2024, 1, 31)
    assert parse_data_br("2024-01-31") == date(2024, 1, 31)
    assert formatar_data_br(date(2024, 1, 5)) == "05/01/2024"
    assert parse_data_br(formatar_data_br(date(2023, 12, 25))) == date(2023, 12, 25)
    dh = parse_data_hora("2024-01-15T10:30:00-03:00")
    assert isinstance(dh, datetime) and dh.date() == date(2024, 1, 15)


def test_data_inexistente():
    with pytest.raises(FormatError):
        parse_data_br("31/02/2024")
    falhas = []
    assert data_tolerante("99/99/9999", "C100.DT_DOC", falhas) is None
    assert falhas and falhas[0].campo == "C100.DT_DOC"


def test_decodificacao_com_fallback_latin1():
    assert decodificar_texto("ação".encode("utf-8")) == ("ação", "utf-8")
    assert decodificar_texto("ação".encode("latin-1")) == ("ação", "latin-1")


def test_formatar_cnpj():
    assert formatar_cnpj("11222333000181") == "11.222.333/0001-81"
    with pytest.raises(FormatError):
        formatar_cnpj("123")


def test_formatar_cpf_e_cep():
    assert formatar_cpf("52998224725") == "529.982.247-25"
    assert formatar_cpf("529.982.247-25") == "529.982.247-25"
    assert formatar_cep("01001000") == "01001-000"
    with pytest.raises(FormatError):
        formatar_cpf("5299822472")
    with pytest.raises(FormatError):
        formatar_cep("0100")
