# testes/test_regras_fiscais.py

import pytest

from regras_fiscais import TabelasTributarias, carregar_tabelas


@pytest.fixture(scope="module")
def tabelas():
    return carregar_tabelas()


def test_icms_padrao_e_por_estado(tabelas):
    assert tabelas.versao == "2024.1"
    assert tabelas.regra_icms("RJ").aliquota_interna == 20.0
    assert tabelas.regra_icms("go").aliquota_interna == 17.0
    padrao = tabelas.regra_icms("XX")
    assert (padrao.aliquota_interna, padrao.aliquota_interestadual) == (18.0, 7.0)


def test_consulta_por_prefixo_de_ncm(tabelas):
    assert tabelas.reducao_base_icms("SP", "2203.00.00") == 30.0
    assert tabelas.reducao_base_icms("SP", "84713012") == 0.0
    assert tabelas.credito_outorgado_icms("MG", "10063021") == 3.0
    assert tabelas.percentual_protege("GO", "15079011") == 2.0
    assert tabelas.percentual_protege("SP", "15079011") == 0.0


def test_federais(tabelas):
    assert tabelas.aliquota_federal("pis") == 1.65
    assert tabelas.aliquota_federal("PIS", cumulativo=True) == 0.65
    assert tabelas.aliquota_federal("COFINS") == 7.6
    assert tabelas.aliquota_federal("cofins", cumulativo=True) == 3.0
    assert tabelas.credito_presumido("COFINS", "10019900") == 4.56
    assert tabelas.credito_presumido("IRPJ", "10019900") == 0.0
    with pytest.raises(KeyError):
        tabelas.aliquota_federal("IRPJ")


def test_tabelas_somente_leitura(tabelas):
    with pytest.raises(TypeError):
        tabelas.estados["SP"] = None
    with pytest.raises(TypeError):
        tabelas.regra_icms("SP").reducoes_ncm["2203"] = 0.0


def test_carga_em_cache(tabelas):
    assert carregar_tabelas() is tabelas


def test_arquivo_ausente_usa_defaults(tmp_path):
    t = carregar_tabelas(tmp_path / "nao_existe.yaml")
    assert t == TabelasTributarias()
    assert t.regra_icms("SP").aliquota_interna == 18.0


def test_yaml_alternativo(tmp_path):
    arq = tmp_path / "regras.yaml"
    arq.write_text(
        'versao: "teste"\n'
        "icms:\n"
        "  estados:\n"
        "    BA:\n"
        "      aliquota_interna: 20.5\n"
        '      reducoes_ncm: {"8471": 10}\n',
        encoding="utf-8",
    )
    t = carregar_tabelas(arq)
    assert t.versao == "teste"
    assert t.regra_icms("BA").aliquota_interna == 20.5
    assert t.reducao_base_icms("BA", "84713012") == 10.0
    with pytest.raises(KeyError):
        t.aliquota_federal("PIS")


def test_tabelas_vazias_usam_padroes_somente_leitura():
    """Tabelas sem YAML: ICMS padrão e mapas vazios imutáveis."""
    vazia = TabelasTributarias()
    assert vazia.regra_icms("SP").aliquota_interna == 18.0
    assert vazia.reducao_base_icms("SP", "22030000") == 0.0
    assert vazia.credito_presumido("PIS", "22030000") == 0.0
    assert len(vazia.estados) == 0
    with pytest.raises(TypeError):
        vazia.estados["SP"] = None
