# orchestrator.py - Orquestrador de ingestão fiscal
from __future__ import annotations

import os
import re
import time
import uuid
import logging
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from erros import FormatError, UnsupportedFileTypeError
from integridade import EXTENSOES_TIPO, ValidadorIntegridade, exigir_valido
from modelos import (
    DadosEmpresa, DadosFiscais, DocumentoFiscal, DocumentoProcessado, Endereco, Imposto,
    MetadadosDocumento, Operacao, Produto, TipoArquivo, TipoDocumento, VarianteSped,
)
from regras_fiscais import TabelasTributarias
from seguranca import mascarar_documento_fiscal
from validacao import ValidadorFiscal
from extratores import (
    ExtratorXMLFiscal,
    ExtratorSpedFiscal,
    ExtratorSpedContribuicoes,
    ExtratorPlanilhaIcms,
    ExtratorProtegePdf,
    inferir_tipo_documento,
    consolidar_pis_cofins,
    consolidar_apuracao,
    dados_empresa,
    periodo,
)
from extratores.sped import cadastro_produtos
from extratores.utils import decodificar_texto

log = logging.getLogger("ingestor_fiscal.orchestrator")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    log.addHandler(_h)
    log.setLevel(logging.INFO)

# (empresa, dados fiscais, encoding)
Extraido = Tuple[DadosEmpresa, DadosFiscais, Optional[str]]

_MARCADORES_CONTRIBUICOES = ("|M001|", "|M100|", "|M200|")
_MARCADOR_FISCAL = "|C100|"
_ENCODING_XML_RE = re.compile(rb"<\?xml[^>]*encoding=[\"']([^\"']+)[\"']", re.I)


def _tipo_por_cfop(cfop: str) -> str:
    """CFOP iniciado em 1, 2 ou 3 é entrada; demais, saída."""
    return "entrada" if cfop[:1] in ("1", "2", "3") else "saida"


class Orchestrator:
    """
    Pipeline de ingestão de um arquivo fiscal.
    - Roteamento fechado por extensão (TipoArquivo); extensão sem tratador é erro.
    - Integridade antes de qualquer parsing; relatório inválido interrompe.
    - Extração específica, fusão no modelo canônico e validação semântica.
    - Envelope com checksum, tempo de processamento e versão do parser.
    """

    VERSAO_PARSER: str = "1.0.0"
    DICAS_PLANILHA: Tuple[str, ...] = tuple(
        d.strip().lower() for d in os.getenv("DICAS_PLANILHA_ICMS", "icms,regras").split(",") if d.strip()
    )
    DICAS_PDF: Tuple[str, ...] = tuple(
        d.strip().lower() for d in os.getenv("DICAS_PDF_PROTEGE", "protege").split(",") if d.strip()
    )

    def __init__(
        self,
        validador: Optional[ValidadorFiscal] = None,
        integridade: Optional[ValidadorIntegridade] = None,
        tabelas: Optional[TabelasTributarias] = None,
    ) -> None:
        self.validador = validador or ValidadorFiscal(tabelas)
        self.integridade = integridade or ValidadorIntegridade()

        self.xml_parser = ExtratorXMLFiscal()
        self.sped_fiscal = ExtratorSpedFiscal()
        self.sped_contribuicoes = ExtratorSpedContribuicoes()
        self.planilha = ExtratorPlanilhaIcms()
        self.protege = ExtratorProtegePdf()

        self._tratadores: Dict[TipoArquivo, Callable[[Path, List[FormatError]], Extraido]] = {
            TipoArquivo.XML: self._processar_xml,
            TipoArquivo.SPED: self._processar_sped,
            TipoArquivo.PLANILHA: self._processar_planilha,
            TipoArquivo.PDF: self._processar_pdf,
        }

    # --------------------------- Ingestão ---------------------------
    def processar_documento(self, caminho: Union[str, Path]) -> DocumentoProcessado:
        t0 = time.perf_counter()
        caminho = Path(caminho)
        nome = caminho.name
        tipo = self.resolver_tipo(nome)

        relatorio = exigir_valido(self.integridade.validar(caminho))
        for aviso in relatorio.avisos:
            log.info(f"Integridade '{nome}': {aviso}")

        falhas: List[FormatError] = []
        empresa, fiscal, encoding = self._tratadores[tipo](caminho, falhas)
        resultados = self.validador.validar(empresa, fiscal)

        doc = DocumentoProcessado(
            id=self.gerar_id(nome),
            nome_arquivo=nome,
            tipo_arquivo=tipo,
            dados_empresa=empresa,
            dados_fiscais=fiscal,
            resultados_validacao=tuple(resultados),
            metadados=MetadadosDocumento(
                tamanho=relatorio.metadados.tamanho,
                checksum=relatorio.checksum,
                tempo_processamento_ms=int((time.perf_counter() - t0) * 1000),
                versao_parser=self.VERSAO_PARSER,
                encoding=encoding,
            ),
            extraido_em=datetime.now(),
            integridade=relatorio,
            falhas_formato=tuple(falhas),
        )
        log.info(
            f"Documento '{nome}' processado: tipo={tipo.value}, cnpj={mascarar_documento_fiscal(empresa.cnpj)}, "
            f"validacoes={len(resultados)}, erros={len(doc.erros_validacao)}, "
            f"falhas_formato={len(falhas)}, {doc.metadados.tempo_processamento_ms}ms."
        )
        return doc

    def processar_bytes(self, nome: str, conteudo: bytes) -> DocumentoProcessado:
        """Grava o buffer em diretório temporário e segue o fluxo por caminho."""
        with tempfile.TemporaryDirectory(prefix="ingestor_fiscal_") as tmp:
            caminho = Path(tmp) / (Path(nome).name or "documento")
            caminho.write_bytes(conteudo)
            return self.processar_documento(caminho)

    # --------------------------- Roteamento ---------------------------
    def resolver_tipo(self, nome: str) -> TipoArquivo:
        ext = Path(nome).suffix.lower()
        tipo = EXTENSOES_TIPO.get(ext)
        if tipo is None:
            raise UnsupportedFileTypeError(nome)
        nome_l = nome.lower()
        if tipo == TipoArquivo.PLANILHA and not any(d in nome_l for d in self.DICAS_PLANILHA):
            raise UnsupportedFileTypeError(nome, "Planilha sem indicação de regras de ICMS no nome")
        if tipo == TipoArquivo.PDF and not any(d in nome_l for d in self.DICAS_PDF):
            raise UnsupportedFileTypeError(nome, "PDF sem indicação de PROTEGE no nome")
        return tipo

    @staticmethod
    def gerar_id(nome: str) -> str:
        """Nome sanitizado + epoch em ms + sufixo aleatório: distinto a cada chamada."""
        base = re.sub(r"[^a-zA-Z0-9]", "", nome)
        return f"{base}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"

    # --------------------------- XML ---------------------------
    def _processar_xml(self, caminho: Path, falhas: List[FormatError]) -> Extraido:
        conteudo = caminho.read_bytes()
        tipo_doc = inferir_tipo_documento(caminho.name, conteudo)
        doc = self.xml_parser.extrair_documento(conteudo, tipo_doc)
        falhas.extend(doc.falhas_formato)

        m = _ENCODING_XML_RE.search(conteudo[:1024])
        encoding = m.group(1).decode("ascii", errors="ignore").lower() if m else "utf-8"
        return self._empresa_xml(doc), self._fiscal_xml(doc), encoding

    @staticmethod
    def _empresa_xml(doc: DocumentoFiscal) -> DadosEmpresa:
        return DadosEmpresa(
            cnpj=doc.cnpj_emitente,
            razao_social=doc.nome_emitente,
            ie=doc.ie_emitente,
            endereco=Endereco(uf=doc.uf_emitente) if doc.uf_emitente else None,
        )

    @staticmethod
    def _fiscal_xml(doc: DocumentoFiscal) -> DadosFiscais:
        data: Optional[date] = doc.data_emissao.date() if doc.data_emissao else None
        produtos = tuple(
            Produto(
                codigo=i.codigo, descricao=i.descricao, ncm=i.ncm,
                quantidade=i.quantidade, valor_unitario=i.valor_unitario, valor_total=i.valor_total,
            )
            for i in doc.itens
        )

        operacoes: Tuple[Operacao, ...] = ()
        if doc.tipo_documento == TipoDocumento.NFE:
            tipo_op = doc.tipo_operacao or "saida"
            operacoes = tuple(
                Operacao(
                    tipo=tipo_op,
                    cfop=i.cfop,
                    cst=i.cst,
                    valor_operacao=i.valor_total,
                    base_calculo=i.icms.base_calculo if i.icms else 0.0,
                    aliquota=i.icms.aliquota if i.icms else 0.0,
                    valor_imposto=i.icms.valor if i.icms else 0.0,
                    data=data,
                )
                for i in doc.itens
            )

        t = doc.impostos
        impostos = tuple(
            Imposto(tipo=tipo, base_calculo=base, valor=valor, periodo=data)
            for tipo, base, valor in (
                ("ICMS", t.base_icms, t.valor_icms),
                ("IPI", 0.0, t.valor_ipi),
                ("PIS", t.base_pis, t.valor_pis),
                ("COFINS", t.base_cofins, t.valor_cofins),
                ("ISS", 0.0, t.valor_iss),
            )
            if valor > 0
        )

        entrada = doc.tipo_operacao == "entrada"
        return DadosFiscais(
            periodo_inicial=data,
            periodo_final=data,
            total_faturamento=None if entrada else doc.valor_total,
            total_compras=doc.valor_total if entrada else None,
            produtos=produtos,
            operacoes=operacoes,
            impostos=impostos,
        )

    # --------------------------- SPED ---------------------------
    def _processar_sped(self, caminho: Path, falhas: List[FormatError]) -> Extraido:
        texto, encoding = decodificar_texto(caminho.read_bytes())
        if any(m in texto for m in _MARCADORES_CONTRIBUICOES):
            variante = VarianteSped.CONTRIBUICOES
        elif _MARCADOR_FISCAL in texto:
            variante = VarianteSped.FISCAL
        else:
            raise UnsupportedFileTypeError(caminho.name, "SPED sem bloco C ou M reconhecível")
        log.info(f"SPED '{caminho.name}' identificado como {variante.value}.")

        if variante == VarianteSped.FISCAL:
            doc = self.sped_fiscal.parse_content(texto)
            return dados_empresa(doc), self._fiscal_sped_icms(doc, falhas), encoding
        doc = self.sped_contribuicoes.parse_content(texto)
        return dados_empresa(doc), self._fiscal_sped_contribuicoes(doc, falhas), encoding

    @staticmethod
    def _fiscal_sped_icms(doc, falhas: List[FormatError]) -> DadosFiscais:
        inicio, fim = periodo(doc, falhas)
        apuracoes = consolidar_apuracao(doc, falhas)

        operacoes = tuple(
            Operacao(
                tipo=_tipo_por_cfop(a.cfop),
                cfop=a.cfop,
                cst=a.cst,
                valor_operacao=a.valor_operacao,
                base_calculo=a.base_icms,
                aliquota=a.aliquota,
                valor_imposto=a.valor_icms,
            )
            for a in apuracoes
        )
        impostos = tuple(
            Imposto(tipo=tipo, base_calculo=base, valor=valor, periodo=fim)
            for tipo, base, valor in (
                ("ICMS", sum(a.base_icms for a in apuracoes), sum(a.valor_icms for a in apuracoes)),
                ("IPI", 0.0, sum(a.valor_ipi for a in apuracoes)),
            )
            if valor > 0
        )
        return DadosFiscais(
            periodo_inicial=inicio,
            periodo_final=fim,
            total_faturamento=sum(o.valor_operacao for o in operacoes if o.tipo == "saida"),
            total_compras=sum(o.valor_operacao for o in operacoes if o.tipo == "entrada"),
            produtos=cadastro_produtos(doc),
            operacoes=operacoes,
            impostos=impostos,
        )

    @staticmethod
    def _fiscal_sped_contribuicoes(doc, falhas: List[FormatError]) -> DadosFiscais:
        inicio, fim = periodo(doc, falhas)
        itens = consolidar_pis_cofins(doc, falhas)
        apuracoes = consolidar_apuracao(doc, falhas)

        operacoes = tuple(
            Operacao(
                tipo=_tipo_por_cfop(i.cfop),
                cfop=i.cfop,
                cst=i.cst,
                valor_operacao=i.valor,
                base_calculo=i.base_pis,
                valor_imposto=i.valor_pis + i.valor_cofins,
                data=i.data,
            )
            for i in itens
        )
        impostos = tuple(
            Imposto(tipo=a.tributo, base_calculo=a.base_calculo, aliquota=a.aliquota, valor=a.valor, periodo=fim)
            for a in apuracoes
            if a.natureza == "contribuicao"
        )
        return DadosFiscais(
            periodo_inicial=inicio,
            periodo_final=fim,
            total_faturamento=sum(o.valor_operacao for o in operacoes if o.tipo == "saida"),
            total_compras=sum(o.valor_operacao for o in operacoes if o.tipo == "entrada"),
            produtos=cadastro_produtos(doc),
            operacoes=operacoes,
            impostos=impostos,
        )

    # --------------------------- Planilha / PDF ---------------------------
    def _processar_planilha(self, caminho: Path, falhas: List[FormatError]) -> Extraido:
        regras = self.planilha.extrair(caminho, falhas)
        return DadosEmpresa(), DadosFiscais(regras_icms=regras), None

    def _processar_pdf(self, caminho: Path, falhas: List[FormatError]) -> Extraido:
        regras = self.protege.extrair(caminho)
        return DadosEmpresa(), DadosFiscais(regras_protege=regras), None


__all__ = ["Orchestrator"]
