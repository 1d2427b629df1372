# testes/test_integridade.py
"""Validador de integridade: arquivo vazio, tetos por tipo, assinaturas e avisos."""

import hashlib

import pytest

from erros import IntegrityError
from integridade import ValidadorIntegridade, exigir_valido
from modelos import TipoArquivo

NFE_MINIMA = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<nfeProc><NFe><infNFe Id="NFe1"><emit><CNPJ>11222333000181</CNPJ></emit>'
    "<ide><dhEmi>2024-01-15T10:00:00-03:00</dhEmi></ide></infNFe></NFe></nfeProc>"
)

SPED_MINIMO = "\n".join([
    "|0000|017|0|01012024|31012024|EMPRESA TESTE|11222333000181||SP|123456789|3550308|||A|1|",
    "|0001|0|",
    "|0005|FANTASIA|01001000|RUA A|10||CENTRO|",
    "|0990|4|",
    "|C001|0|",
    "|C100|0|1|PART1|55|00|1|123|||15012024|15012024|1000,00|",
    "|C170|1|P1|Produto|10|UN|1000,00|0|0|000|5102|001|1000,00|18,00|180,00|",
    "|C190|000|5102|18,00|1000,00|1000,00|180,00|0|0|0|0||",
    "|C990|6|",
    "|9990|2|",
    "|9999|12|",
]) + "\n"


@pytest.fixture
def validador():
    return ValidadorIntegridade()


def test_arquivo_vazio(tmp_path, validador):
    arq = tmp_path / "vazio.xml"
    arq.write_bytes(b"")
    rel = validador.validar(arq)
    assert not rel.valido
    assert rel.erros == ("Arquivo vazio",)
    assert rel.checksum == ""


def test_caminho_inexistente(tmp_path, validador):
    rel = validador.validar(tmp_path / "nada.xml")
    assert not rel.valido
    assert "Não é um arquivo válido" in rel.erros


def test_teto_por_tipo(tmp_path):
    arq = tmp_path / "nota.xml"
    arq.write_bytes(NFE_MINIMA.encode("utf-8") + b" " * 2048)
    rel = ValidadorIntegridade(limites_mb={TipoArquivo.XML: 0.001}).validar(arq)
    assert not rel.valido
    assert "XML muito grande (máximo 0.001MB)" in rel.erros
    # checksum é calculado mesmo com erro de teto por tipo
    assert rel.checksum == hashlib.sha256(arq.read_bytes()).hexdigest()


def test_teto_absoluto(tmp_path):
    arq = tmp_path / "nota.xml"
    arq.write_bytes(NFE_MINIMA.encode("utf-8"))
    rel = ValidadorIntegridade(max_mb=0.0001).validar(arq)
    assert rel.erros == ("Arquivo muito grande (máximo 0.0001MB)",)
    assert rel.checksum == ""


def test_pdf_falso(tmp_path, validador):
    arq = tmp_path / "protege.pdf"
    arq.write_text("isto não é um pdf", encoding="utf-8")
    rel = validador.validar(arq)
    assert not rel.valido
    assert "Arquivo não parece ser um PDF válido" in rel.erros
    # varredura de conteúdo não roda em formatos binários
    assert "Nenhum CNPJ encontrado no arquivo" not in rel.avisos
    with pytest.raises(IntegrityError) as exc:
        exigir_valido(rel)
    assert exc.value.relatorio is rel
    assert exc.value.code == "INTEGRITY_ERROR"


def test_planilha_falsa(tmp_path, validador):
    arq = tmp_path / "regras_icms.xlsx"
    arq.write_bytes(b"texto qualquer")
    rel = validador.validar(arq)
    assert "Arquivo não parece ser um Excel válido" in rel.erros


def test_xml_valido(tmp_path, validador):
    arq = tmp_path / "nota.xml"
    arq.write_text(NFE_MINIMA, encoding="utf-8")
    rel = exigir_valido(validador.validar(arq))
    assert rel.valido
    assert rel.erros == ()
    assert rel.metadados.tipo_arquivo == TipoArquivo.XML
    assert rel.metadados.cnpj == "11222333000181"
    assert rel.metadados.datas == ("2024-01-15",)
    assert rel.checksum == hashlib.sha256(NFE_MINIMA.encode("utf-8")).hexdigest()


def test_xml_avisos(tmp_path, validador):
    arq = tmp_path / "outro.xml"
    arq.write_text('<?xml version="1.0" encoding="ISO-8859-1"?><nfeProc><qualquer>1</qualquer>', encoding="latin-1")
    rel = validador.validar(arq)
    assert rel.valido
    assert "XML não contém tags típicas de NFe" in rel.avisos
    assert "Encoding diferente do esperado (UTF-8): ISO-8859-1" in rel.avisos
    assert "XML pode estar incompleto (falta fechamento)" in rel.avisos
    assert "Nenhum CNPJ encontrado no arquivo" in rel.avisos


def test_nao_xml(tmp_path, validador):
    arq = tmp_path / "nota.xml"
    arq.write_text("apenas texto", encoding="utf-8")
    rel = validador.validar(arq)
    assert "Arquivo não parece ser um XML válido" in rel.erros


def test_sped_valido(tmp_path, validador):
    arq = tmp_path / "efd.txt"
    arq.write_text(SPED_MINIMO, encoding="utf-8")
    rel = validador.validar(arq)
    assert rel.valido
    assert rel.avisos == ()
    assert rel.metadados.tipo_arquivo == TipoArquivo.SPED


def test_sped_avisos(tmp_path, validador):
    arq = tmp_path / "efd.txt"
    arq.write_text("|0000|017|0|01012024|31012024|EMPRESA|11222333000181|\nlinha solta\n", encoding="utf-8")
    rel = validador.validar(arq)
    assert rel.valido
    assert "SPED com poucas linhas, pode estar incompleto" in rel.avisos
    assert "SPED não contém dados fiscais típicos" in rel.avisos
    assert "1 linhas não seguem o formato SPED" in rel.avisos
    assert "SPED pode estar incompleto (falta totalizadores)" in rel.avisos


def test_texto_que_nao_e_sped(tmp_path, validador):
    arq = tmp_path / "notas.txt"
    arq.write_text("relatório qualquer\n", encoding="utf-8")
    rel = validador.validar(arq)
    assert rel.erros == ("Arquivo não parece ser um SPED válido",)


def test_extensao_desconhecida_apenas_avisa(tmp_path, validador):
    arq = tmp_path / "dados.csv"
    arq.write_text("cnpj;valor\n11.222.333/0001-81;R$ 10,00\n", encoding="utf-8")
    rel = validador.validar(arq)
    assert rel.valido
    assert "Tipo de arquivo não validado: .csv" in rel.avisos
    assert rel.metadados.cnpj == "11.222.333/0001-81"
    assert rel.metadados.valores_monetarios


@pytest.mark.parametrize("nome, conteudo, tipo, mensagem", [
    ("protege.pdf", b"%PDF-1.7\n", TipoArquivo.PDF, "PDF muito grande (máximo 0.001MB)"),
    ("efd.txt", SPED_MINIMO.encode("utf-8"), TipoArquivo.SPED, "SPED muito grande (máximo 0.001MB)"),
    ("regras_icms.xlsx", b"PK\x03\x04", TipoArquivo.PLANILHA, "Planilha muito grande (máximo 0.001MB)"),
])
def test_teto_por_tipo_demais_formatos(tmp_path, nome, conteudo, tipo, mensagem):
    arq = tmp_path / nome
    arq.write_bytes(conteudo + b"\n" * 2048)
    rel = ValidadorIntegridade(limites_mb={tipo: 0.001}).validar(arq)
    assert not rel.valido
    assert mensagem in rel.erros
    assert rel.checksum == hashlib.sha256(arq.read_bytes()).hexdigest()


def test_teto_de_um_tipo_nao_afeta_outro(tmp_path):
    arq = tmp_path / "protege.pdf"
    arq.write_bytes(b"%PDF-1.7\n" + b"\n" * 2048)
    rel = ValidadorIntegridade(limites_mb={TipoArquivo.XML: 0.001}).validar(arq)
    assert rel.valido


def test_xml_tags_desbalanceadas(tmp_path, validador):
    arq = tmp_path / "nota.xml"
    arq.write_text(NFE_MINIMA.replace("<emit>", "<emit>" + "<" * 8), encoding="utf-8")
    rel = validador.validar(arq)
    assert rel.valido
    assert "Possível desbalanceamento de tags XML" in rel.avisos


def test_xml_balanceado_sem_aviso_de_tags(tmp_path, validador):
    arq = tmp_path / "nota.xml"
    arq.write_text(NFE_MINIMA, encoding="utf-8")
    rel = validador.validar(arq)
    assert "Possível desbalanceamento de tags XML" not in rel.avisos
