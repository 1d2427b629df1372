# testes/test_xml_fiscal.py

from datetime import date

import pytest

from erros import MissingStructureError, StructuralError, UnsupportedDocumentTypeError
from extratores import ExtratorXMLFiscal, inferir_tipo_documento
from modelos import StatusAutorizacao, TipoDocumento

NS = 'xmlns="http://www.portalfiscal.inf.br/nfe"'

NFE_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<nfeProc {NS} versao="4.00">
  <NFe>
    <infNFe Id="NFe35240111222333000181550010000001231000001234" versao="4.00">
      <ide><nNF>123</nNF><serie>1</serie><dhEmi>2024-01-15T10:30:00-03:00</dhEmi><tpNF>1</tpNF></ide>
      <emit>
        <CNPJ>11222333000181</CNPJ><xNome>EMPRESA  TESTE LTDA</xNome><IE>123456789</IE>
        <enderEmit><UF>sp</UF></enderEmit>
      </emit>
      <dest><CPF>52998224725</CPF></dest>
      <det nItem="1">
        <prod>
          <cProd>P1</cProd><xProd>Produto 1</xProd><NCM>22030000</NCM><CFOP>5102</CFOP>
          <qCom>2.0000</qCom><vUnCom>499.50</vUnCom><vProd>999.00</vProd>
        </prod>
        <imposto>
          <ICMS><ICMS00><orig>0</orig><CST>00</CST><vBC>999.00</vBC><pICMS>18.00</pICMS><vICMS>179.82</vICMS></ICMS00></ICMS>
          <PIS><PISAliq><CST>01</CST><vBC>999.00</vBC><pPIS>1.65</pPIS><vPIS>16.48</vPIS></PISAliq></PIS>
          <COFINS><COFINSAliq><CST>01</CST><vBC>999.00</vBC><pCOFINS>7.60</pCOFINS><vCOFINS>75.92</vCOFINS></COFINSAliq></COFINS>
        </imposto>
      </det>
      <total><ICMSTot><vBC>999.00</vBC><vICMS>179.82</vICMS><vIPI>0.00</vIPI><vPIS>16.48</vPIS><vCOFINS>75.92</vCOFINS><vNF>1000.00</vNF></ICMSTot></total>
      <infAdic><infCpl>Frete  incluso</infCpl></infAdic>
    </infNFe>
  </NFe>
  <protNFe><infProt><cStat>100</cStat><nProt>135240000000001</nProt></infProt></protNFe>
</nfeProc>
"""

CTE_XML = """<cteProc xmlns="http://www.portalfiscal.inf.br/cte">
  <CTe><infCte Id="CTe35240111222333000181570010000000011000000010">
    <ide><nCT>1</nCT><serie>1</serie><dhEmi>2024-02-01T08:00:00-03:00</dhEmi></ide>
    <emit><CNPJ>11222333000181</CNPJ><xNome>TRANSPORTES</xNome></emit>
    <rem><CNPJ>11444777000161</CNPJ></rem>
    <vPrest><vTPrest>350.00</vTPrest><vRec>350.00</vRec></vPrest>
    <imp><ICMS><ICMS00><CST>00</CST><vBC>350.00</vBC><pICMS>12.00</pICMS><vICMS>42.00</vICMS></ICMS00></ICMS></imp>
  </infCte></CTe>
  <protCTe><infProt><cStat>101</cStat><nProt>999</nProt></infProt></protCTe>
</cteProc>
"""

NFSE_XML = """<CompNfse xmlns="http://www.abrasf.org.br/nfse.xsd">
  <Nfse><InfNfse>
    <Numero>42</Numero>
    <CodigoVerificacao>ABC123</CodigoVerificacao>
    <DataEmissao>2024-03-10T09:00:00</DataEmissao>
    <Servico>
      <Valores><ValorServicos>1500.00</ValorServicos><ValorIss>75.00</ValorIss><Aliquota>5.00</Aliquota></Valores>
      <ItemListaServico>1.07</ItemListaServico>
      <Discriminacao>Suporte técnico</Discriminacao>
    </Servico>
    <PrestadorServico>
      <IdentificacaoPrestador><Cnpj>11222333000181</Cnpj></IdentificacaoPrestador>
      <RazaoSocial>SERVICOS LTDA</RazaoSocial>
    </PrestadorServico>
    <TomadorServico>
      <IdentificacaoTomador><CpfCnpj><Cpf>52998224725</Cpf></CpfCnpj></IdentificacaoTomador>
    </TomadorServico>
  </InfNfse></Nfse>
  <NfseCancelamento><Confirmacao/></NfseCancelamento>
</CompNfse>
"""

MDFE_XML = """<mdfeProc xmlns="http://www.portalfiscal.inf.br/mdfe">
  <MDFe><infMDFe Id="MDFe35240111222333000181580010000000071000000070">
    <ide><serie>1</serie><nMDF>7</nMDF><dhEmi>2024-04-01T12:00:00-03:00</dhEmi></ide>
    <emit><CNPJ>11222333000181</CNPJ><xNome>LOGISTICA</xNome></emit>
    <tot><qNFe>2</qNFe><vCarga>25000.50</vCarga></tot>
  </infMDFe></MDFe>
</mdfeProc>
"""


@pytest.fixture
def extrator():
    return ExtratorXMLFiscal()


def test_nfe_completa(extrator):
    doc = extrator.extrair_documento(NFE_XML.encode("utf-8"), TipoDocumento.NFE)

    assert doc.tipo_documento == TipoDocumento.NFE
    assert doc.numero_documento == "123"
    assert doc.data_emissao.date() == date(2024, 1, 15)
    assert doc.cnpj_emitente == "11222333000181"
    assert doc.nome_emitente == "EMPRESA TESTE LTDA"
    assert doc.uf_emitente == "SP"
    assert doc.cpf_destinatario == "52998224725" and doc.cnpj_destinatario == ""
    assert doc.chave_acesso == "35240111222333000181550010000001231000001234"
    assert doc.status == StatusAutorizacao.AUTORIZADA
    assert doc.codigo_status == "100"
    assert doc.protocolo == "135240000000001"
    assert doc.tipo_operacao == "saida"
    assert doc.observacoes == "Frete incluso"
    assert doc.falhas_formato == ()

    item = doc.itens[0]
    assert len(doc.itens) == 1
    assert (item.codigo, item.ncm, item.cfop, item.cst) == ("P1", "22030000", "5102", "00")
    assert item.icms.valor == pytest.approx(179.82)
    assert item.pis.aliquota == pytest.approx(1.65)
    assert item.cofins.valor == pytest.approx(75.92)
    assert item.ipi is None

    assert doc.impostos.valor_icms == pytest.approx(179.82)
    assert doc.impostos.base_icms == pytest.approx(999.0)


def test_total_vem_do_cabecalho(extrator):
    doc = extrator.extrair_documento(NFE_XML, "nfe")
    assert doc.valor_total == pytest.approx(1000.0)
    assert sum(i.valor_total for i in doc.itens) == pytest.approx(999.0)


def test_nfe_sem_itens_e_sem_protocolo(extrator):
    xml = (
        "<NFe><infNFe><emit><CNPJ>11222333000181</CNPJ></emit>"
        "<total><ICMSTot><vNF>50.00</vNF></ICMSTot></total></infNFe></NFe>"
    )
    doc = extrator.extrair_documento(xml, TipoDocumento.NFE)
    assert doc.itens == ()
    assert doc.valor_total == pytest.approx(50.0)
    assert doc.status == StatusAutorizacao.AUTORIZADA
    assert doc.codigo_status == "" and doc.protocolo == ""


def test_campo_ilegivel_vira_zero(extrator):
    xml = NFE_XML.replace("<vProd>999.00</vProd>", "<vProd>abc</vProd>")
    doc = extrator.extrair_documento(xml, TipoDocumento.NFE)
    assert doc.itens[0].valor_total == 0.0
    assert [f.campo for f in doc.falhas_formato] == ["det[1].vProd"]


def test_cstat_desconhecido_assume_autorizada(extrator):
    doc = extrator.extrair_documento(NFE_XML.replace("<cStat>100</cStat>", "<cStat>999</cStat>"), "NFE")
    assert doc.status == StatusAutorizacao.AUTORIZADA
    assert doc.codigo_status == "999"


def test_cstat_denegada(extrator):
    doc = extrator.extrair_documento(NFE_XML.replace("<cStat>100</cStat>", "<cStat>110</cStat>"), "NFE")
    assert doc.status == StatusAutorizacao.DENEGADA


def test_cte(extrator):
    doc = extrator.extrair_documento(CTE_XML, TipoDocumento.CTE)
    assert doc.numero_documento == "1"
    assert doc.valor_total == pytest.approx(350.0)
    assert doc.impostos.valor_icms == pytest.approx(42.0)
    assert doc.cnpj_destinatario == "11444777000161"
    assert doc.status == StatusAutorizacao.CANCELADA


def test_nfse(extrator):
    doc = extrator.extrair_documento(NFSE_XML, TipoDocumento.NFSE)
    assert doc.numero_documento == "42"
    assert doc.cnpj_emitente == "11222333000181"
    assert doc.nome_emitente == "SERVICOS LTDA"
    assert doc.cpf_destinatario == "52998224725"
    assert doc.valor_total == pytest.approx(1500.0)
    assert doc.impostos.valor_iss == pytest.approx(75.0)
    assert doc.protocolo == "ABC123"
    assert doc.status == StatusAutorizacao.CANCELADA
    assert len(doc.itens) == 1
    assert doc.itens[0].iss.aliquota == pytest.approx(5.0)
    assert doc.itens[0].descricao == "Suporte técnico"


def test_mdfe(extrator):
    doc = extrator.extrair_documento(MDFE_XML, TipoDocumento.MDFE)
    assert doc.numero_documento == "7"
    assert doc.valor_total == pytest.approx(25000.5)
    assert doc.itens == ()
    assert doc.chave_acesso.startswith("3524")


def test_tipo_nao_suportado(extrator):
    with pytest.raises(UnsupportedDocumentTypeError):
        extrator.extrair_documento(NFE_XML, "boleto")


def test_xml_mal_formado(extrator):
    with pytest.raises(StructuralError) as exc:
        extrator.extrair_documento("<NFe><infNFe>", TipoDocumento.NFE)
    assert exc.value.code == "MALFORMED_XML"


def test_estrutura_ausente(extrator):
    with pytest.raises(MissingStructureError) as exc:
        extrator.extrair_documento(CTE_XML, TipoDocumento.NFE)
    assert exc.value.estrutura == "infNFe"


def test_inferencia_de_tipo():
    assert inferir_tipo_documento("CTe_123.xml") == TipoDocumento.CTE
    assert inferir_tipo_documento("mdfe.xml") == TipoDocumento.MDFE
    assert inferir_tipo_documento("documento.xml", NFSE_XML) == TipoDocumento.NFSE
    assert inferir_tipo_documento("documento.xml", CTE_XML.encode("utf-8")) == TipoDocumento.CTE
    assert inferir_tipo_documento("documento.xml", "<qualquer/>") == TipoDocumento.NFE


def test_conteudo_prevalece_sobre_nome():
    assert inferir_tipo_documento("nfe_collected_jan.xml", NFE_XML) == TipoDocumento.NFE
    assert inferir_tipo_documento("cte_lote.xml", NFE_XML.encode("utf-8")) == TipoDocumento.NFE


def test_dica_de_nome_exige_palavra_inteira():
    assert inferir_tipo_documento("protected.xml") == TipoDocumento.NFE
    assert inferir_tipo_documento("selected_2024.xml") == TipoDocumento.NFE
    assert inferir_tipo_documento("lote-cte-01.xml") == TipoDocumento.CTE
    assert inferir_tipo_documento("NFSe_42.xml") == TipoDocumento.NFSE


def test_det_sem_prod_e_sem_imposto_nao_conta(extrator):
    xml = NFE_XML.replace(
        '<total>',
        '<det nItem="2"><infAdProd>sem dados</infAdProd></det><total>',
    )
    doc = extrator.extrair_documento(xml, TipoDocumento.NFE)
    assert len(doc.itens) == 1
    assert doc.itens[0].codigo == "P1"
    assert doc.falhas_formato == ()
