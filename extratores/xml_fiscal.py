# extratores/xml_fiscal.py

from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union
from xml.etree import ElementTree as ET

from erros import FormatError, MissingStructureError, StructuralError
from modelos import (
    DocumentoFiscal, ItemDocumento, StatusAutorizacao, TipoDocumento,
    TotaisImpostos, TributoItem,
)
from seguranca import mascarar_documento_fiscal
from .utils import log, _norm_ws, _only_digits, data_tolerante, numero_tolerante


# cStat do protocolo -> status. Códigos fora da tabela caem em AUTORIZADA com aviso.
STATUS_POR_CSTAT: Dict[str, StatusAutorizacao] = {
    "100": StatusAutorizacao.AUTORIZADA,
    "150": StatusAutorizacao.AUTORIZADA,
    "101": StatusAutorizacao.CANCELADA,
    "151": StatusAutorizacao.CANCELADA,
    "135": StatusAutorizacao.CANCELADA,
    "110": StatusAutorizacao.DENEGADA,
    "205": StatusAutorizacao.DENEGADA,
    "301": StatusAutorizacao.DENEGADA,
    "302": StatusAutorizacao.DENEGADA,
}

_TIPO_OPERACAO_NFE = {"0": "entrada", "1": "saida"}

_DICAS_NOME: Tuple[Tuple[re.Pattern, TipoDocumento], ...] = tuple(
    (re.compile(rf"(?<![a-z]){dica}(?![a-z])"), tipo)
    for dica, tipo in (
        ("mdfe", TipoDocumento.MDFE),
        ("nfse", TipoDocumento.NFSE),
        ("cte", TipoDocumento.CTE),
        ("nfe", TipoDocumento.NFE),
    )
)
_DICAS_CONTEUDO: Tuple[Tuple[str, TipoDocumento], ...] = (
    ("infmdfe", TipoDocumento.MDFE),
    ("infnfse", TipoDocumento.NFSE),
    ("compnfse", TipoDocumento.NFSE),
    ("infcte", TipoDocumento.CTE),
    ("infnfe", TipoDocumento.NFE),
)


def inferir_tipo_documento(nome: str, conteudo: Union[str, bytes, None] = None) -> TipoDocumento:
    """Tag raiz no início do conteúdo; depois dica no nome (palavra inteira); por fim NFe."""
    if conteudo:
        amostra = conteudo[:4096]
        if isinstance(amostra, bytes):
            amostra = amostra.decode("utf-8", errors="ignore")
        amostra = amostra.lower()
        for dica, tipo in _DICAS_CONTEUDO:
            if dica in amostra:
                return tipo
    nome_l = (nome or "").lower()
    for padrao, tipo in _DICAS_NOME:
        if padrao.search(nome_l):
            return tipo
    return TipoDocumento.NFE


class ExtratorXMLFiscal:
    """
    Extrai NFe, CTe, NFSe (ABRASF) e MDFe para `DocumentoFiscal`.

    Sub-árvores opcionais ausentes viram "" / 0.0. Valores numéricos
    ilegíveis viram 0.0 e ficam registrados em `falhas_formato`.
    Totais vêm sempre dos nós de cabeçalho.
    """

    def __init__(self) -> None:
        self._extratores: Dict[TipoDocumento, Callable[[ET.Element, List[FormatError]], DocumentoFiscal]] = {
            TipoDocumento.NFE: self._extrair_nfe,
            TipoDocumento.CTE: self._extrair_cte,
            TipoDocumento.NFSE: self._extrair_nfse,
            TipoDocumento.MDFE: self._extrair_mdfe,
        }

    # ==================== API ====================
    def extrair_documento(self, conteudo: Union[str, bytes], tipo_documento) -> DocumentoFiscal:
        tipo = TipoDocumento.de_valor(tipo_documento)
        root = self._parse(conteudo)
        falhas: List[FormatError] = []
        doc = self._extratores[tipo](root, falhas)
        if falhas:
            log.warning("XML %s nº %s: %d campo(s) ilegível(is) assumidos como zero.",
                        tipo.value, doc.numero_documento or "?", len(falhas))
        log.info("XML %s extraído (emitente=%s, itens=%d, status=%s).",
                 tipo.value, mascarar_documento_fiscal(doc.cnpj_emitente), len(doc.itens), doc.status.value)
        return doc

    # ==================== Parse ====================
    def _parse(self, conteudo: Union[str, bytes]) -> ET.Element:
        try:
            return ET.fromstring(conteudo)
        except ET.ParseError as e:
            if not isinstance(conteudo, bytes):
                raise StructuralError(f"XML mal formado: {e}", "MALFORMED_XML") from e
            primeira_falha = e
        try:
            return ET.fromstring(conteudo.decode("latin-1", errors="ignore").encode("utf-8"))
        except ET.ParseError:
            raise StructuralError(f"XML mal formado: {primeira_falha}", "MALFORMED_XML") from primeira_falha

    def _raiz(self, root: ET.Element, *locais: str) -> ET.Element:
        for local in locais:
            el = self._find(root, local)
            if el is not None:
                return el
        raise MissingStructureError(locais[0])

    # ==================== NFe ====================
    def _extrair_nfe(self, root: ET.Element, falhas: List[FormatError]) -> DocumentoFiscal:
        inf = self._raiz(root, "infNFe")
        ide = self._find(inf, "ide")
        emit = self._find(inf, "emit")
        dest = self._find(inf, "dest")
        total = self._find(inf, "total")
        tot = self._find(total, "ICMSTot")
        iss_tot = self._find(total, "ISSQNtot")
        inf_adic = self._find(inf, "infAdic")

        itens: List[ItemDocumento] = []
        for n, det in enumerate(self._findall(inf, "det"), start=1):
            item = self._item_nfe(det, n, falhas)
            if item is not None:
                itens.append(item)

        impostos = TotaisImpostos(
            valor_icms=self._num(self._text(tot, "vICMS"), "ICMSTot.vICMS", falhas),
            valor_ipi=self._num(self._text(tot, "vIPI"), "ICMSTot.vIPI", falhas),
            valor_pis=self._num(self._text(tot, "vPIS"), "ICMSTot.vPIS", falhas),
            valor_cofins=self._num(self._text(tot, "vCOFINS"), "ICMSTot.vCOFINS", falhas),
            valor_iss=self._num(self._text(iss_tot, "vISS"), "ISSQNtot.vISS", falhas),
            base_icms=self._num(self._text(tot, "vBC"), "ICMSTot.vBC", falhas),
        )

        cnpj_dest, cpf_dest = self._documento_destinatario(dest)
        status, codigo, protocolo = self._autorizacao(self._find(root, "protNFe"))
        chave = _only_digits(inf.get("Id")) or _only_digits(self._first_text_by_local_name(root, "chNFe"))

        return DocumentoFiscal(
            tipo_documento=TipoDocumento.NFE,
            numero_documento=self._text(ide, "nNF") or "",
            serie=self._text(ide, "serie") or "",
            data_emissao=data_tolerante(self._text_any(ide, ("dhEmi", "dEmi")), "ide.dhEmi", falhas, com_hora=True),
            valor_total=self._num(self._text(tot, "vNF"), "ICMSTot.vNF", falhas),
            cnpj_emitente=_only_digits(self._text(emit, "CNPJ")),
            cnpj_destinatario=cnpj_dest,
            cpf_destinatario=cpf_dest,
            itens=tuple(itens),
            impostos=impostos,
            chave_acesso=chave,
            protocolo=protocolo,
            status=status,
            observacoes=self._observacoes(self._text_any(inf_adic, ("infCpl", "infAdFisco"))),
            nome_emitente=_norm_ws(self._text(emit, "xNome")),
            ie_emitente=_only_digits(self._text(emit, "IE")),
            uf_emitente=(self._text(self._find(emit, "enderEmit"), "UF") or "").upper(),
            tipo_operacao=_TIPO_OPERACAO_NFE.get(self._text(ide, "tpNF") or "", ""),
            codigo_status=codigo,
            falhas_formato=tuple(falhas),
        )

    def _item_nfe(self, det: ET.Element, n: int, falhas: List[FormatError]) -> Optional[ItemDocumento]:
        prod = self._find(det, "prod")
        imposto = self._find(det, "imposto")
        if prod is None and imposto is None:
            log.debug("det %d sem prod e sem imposto; ignorado.", n)
            return None
        campo = f"det[{n}]"

        cst = ""
        icms = None
        icms_node = self._find(imposto, "ICMS")
        icms_detalhe = next(iter(list(icms_node)), None) if icms_node is not None else None
        if icms_detalhe is not None:
            cst = self._text_any(icms_detalhe, ("CST", "CSOSN")) or ""
            icms = TributoItem(
                aliquota=self._num(self._text(icms_detalhe, "pICMS"), f"{campo}.pICMS", falhas),
                valor=self._num(self._text(icms_detalhe, "vICMS"), f"{campo}.vICMS", falhas),
                base_calculo=self._num(self._text(icms_detalhe, "vBC"), f"{campo}.vBC", falhas),
            )

        ipi = None
        ipi_trib = self._find(self._find(imposto, "IPI"), "IPITrib")
        if ipi_trib is not None:
            ipi = TributoItem(
                aliquota=self._num(self._text(ipi_trib, "pIPI"), f"{campo}.pIPI", falhas),
                valor=self._num(self._text(ipi_trib, "vIPI"), f"{campo}.vIPI", falhas),
                base_calculo=self._num(self._text(ipi_trib, "vBC"), f"{campo}.IPI.vBC", falhas),
            )

        iss = None
        issqn = self._find(imposto, "ISSQN")
        if issqn is not None:
            iss = TributoItem(
                aliquota=self._num(self._text(issqn, "vAliq"), f"{campo}.vAliq", falhas),
                valor=self._num(self._text(issqn, "vISSQN"), f"{campo}.vISSQN", falhas),
                base_calculo=self._num(self._text(issqn, "vBC"), f"{campo}.ISSQN.vBC", falhas),
            )

        return ItemDocumento(
            codigo=self._text(prod, "cProd") or "",
            descricao=_norm_ws(self._text(prod, "xProd")),
            ncm=_only_digits(self._text(prod, "NCM")),
            cfop=_only_digits(self._text(prod, "CFOP")),
            quantidade=self._num(self._text(prod, "qCom"), f"{campo}.qCom", falhas),
            valor_unitario=self._num(self._text(prod, "vUnCom"), f"{campo}.vUnCom", falhas),
            valor_total=self._num(self._text(prod, "vProd"), f"{campo}.vProd", falhas),
            cst=cst,
            icms=icms,
            ipi=ipi,
            pis=self._grupo_contribuicao(self._find(imposto, "PIS"), "PIS", campo, falhas),
            cofins=self._grupo_contribuicao(self._find(imposto, "COFINS"), "COFINS", campo, falhas),
            iss=iss,
        )

    def _grupo_contribuicao(self, node: Optional[ET.Element], sigla: str, campo: str,
                            falhas: List[FormatError]) -> Optional[TributoItem]:
        """PIS/COFINS: primeiro grupo filho (Aliq, Qtde, NT, Outr)."""
        grupo = next(iter(list(node)), None) if node is not None else None
        if grupo is None:
            return None
        return TributoItem(
            aliquota=self._num(self._text(grupo, f"p{sigla}"), f"{campo}.p{sigla}", falhas),
            valor=self._num(self._text(grupo, f"v{sigla}"), f"{campo}.v{sigla}", falhas),
            base_calculo=self._num(self._text(grupo, "vBC"), f"{campo}.{sigla}.vBC", falhas),
        )

    # ==================== CTe ====================
    def _extrair_cte(self, root: ET.Element, falhas: List[FormatError]) -> DocumentoFiscal:
        inf = self._raiz(root, "infCte")
        ide = self._find(inf, "ide")
        emit = self._find(inf, "emit")
        dest = self._find(inf, "dest")
        if dest is None:
            dest = self._find(inf, "rem")
        vprest = self._find(inf, "vPrest")

        icms_node = self._find(self._find(inf, "imp"), "ICMS")
        icms_detalhe = next(iter(list(icms_node)), None) if icms_node is not None else None
        impostos = TotaisImpostos(
            valor_icms=self._num(self._text(icms_detalhe, "vICMS"), "imp.ICMS.vICMS", falhas),
            base_icms=self._num(self._text(icms_detalhe, "vBC"), "imp.ICMS.vBC", falhas),
        )

        cnpj_dest, cpf_dest = self._documento_destinatario(dest)
        status, codigo, protocolo = self._autorizacao(self._find(root, "protCTe"))

        return DocumentoFiscal(
            tipo_documento=TipoDocumento.CTE,
            numero_documento=self._text(ide, "nCT") or "",
            serie=self._text(ide, "serie") or "",
            data_emissao=data_tolerante(self._text_any(ide, ("dhEmi", "dEmi")), "ide.dhEmi", falhas, com_hora=True),
            valor_total=self._num(self._text(vprest, "vTPrest"), "vPrest.vTPrest", falhas),
            cnpj_emitente=_only_digits(self._text(emit, "CNPJ")),
            cnpj_destinatario=cnpj_dest,
            cpf_destinatario=cpf_dest,
            impostos=impostos,
            chave_acesso=_only_digits(inf.get("Id")) or _only_digits(self._first_text_by_local_name(root, "chCTe")),
            protocolo=protocolo,
            status=status,
            observacoes=self._observacoes(self._text(self._find(inf, "compl"), "xObs")),
            nome_emitente=_norm_ws(self._text(emit, "xNome")),
            ie_emitente=_only_digits(self._text(emit, "IE")),
            uf_emitente=(self._text(self._find(emit, "enderEmit"), "UF") or "").upper(),
            codigo_status=codigo,
            falhas_formato=tuple(falhas),
        )

    # ==================== NFSe (ABRASF) ====================
    def _extrair_nfse(self, root: ET.Element, falhas: List[FormatError]) -> DocumentoFiscal:
        inf = self._raiz(root, "InfNfse")
        prest = self._find(inf, "PrestadorServico")
        if prest is None:
            prest = self._find(inf, "Prestador")
        toma = self._find(inf, "TomadorServico")
        if toma is None:
            toma = self._find(inf, "Tomador")

        itens: List[ItemDocumento] = []
        for n, servico in enumerate(self._findall(inf, "Servico"), start=1):
            itens.append(self._item_servico(servico, n, falhas))

        valor_servicos = self._first_text_by_local_name(inf, "ValorServicos")
        valor_total = self._num(
            valor_servicos if valor_servicos is not None else self._first_text_by_local_name(inf, "ValorLiquidoNfse"),
            "ValorServicos", falhas,
        )
        impostos = TotaisImpostos(
            valor_iss=self._num(self._first_text_by_local_name(inf, "ValorIss"), "ValorIss", falhas),
            valor_pis=self._num(self._first_text_by_local_name(inf, "ValorPis"), "ValorPis", falhas),
            valor_cofins=self._num(self._first_text_by_local_name(inf, "ValorCofins"), "ValorCofins", falhas),
        )

        cancelada = any(self._find(root, tag) is not None for tag in ("NfseCancelamento", "CancelamentoNfse"))
        tomador_doc = self._find(toma, "CpfCnpj") if toma is not None else None
        cnpj_dest = _only_digits(self._first_text_by_local_name(tomador_doc, "Cnpj")) if tomador_doc is not None else ""
        cpf_dest = "" if cnpj_dest else (
            _only_digits(self._first_text_by_local_name(tomador_doc, "Cpf")) if tomador_doc is not None else ""
        )
        end_prest = self._find(prest, "Endereco") if prest is not None else None

        return DocumentoFiscal(
            tipo_documento=TipoDocumento.NFSE,
            numero_documento=self._text(inf, "Numero") or "",
            data_emissao=data_tolerante(self._text(inf, "DataEmissao"), "DataEmissao", falhas, com_hora=True),
            valor_total=valor_total,
            cnpj_emitente=_only_digits(self._first_text_by_local_name(prest, "Cnpj")) if prest is not None else "",
            cnpj_destinatario=cnpj_dest,
            cpf_destinatario=cpf_dest,
            itens=tuple(itens),
            impostos=impostos,
            protocolo=self._text(inf, "CodigoVerificacao") or "",
            status=StatusAutorizacao.CANCELADA if cancelada else StatusAutorizacao.AUTORIZADA,
            observacoes=self._observacoes(self._text(inf, "OutrasInformacoes")),
            nome_emitente=_norm_ws(self._first_text_by_local_name(prest, "RazaoSocial")) if prest is not None else "",
            uf_emitente=(self._text_any(end_prest, ("Uf", "UF", "Estado")) or "").upper(),
            falhas_formato=tuple(falhas),
        )

    def _item_servico(self, servico: ET.Element, n: int, falhas: List[FormatError]) -> ItemDocumento:
        campo = f"Servico[{n}]"
        valores = self._find(servico, "Valores")
        valor = self._num(self._text(valores, "ValorServicos"), f"{campo}.ValorServicos", falhas)
        return ItemDocumento(
            codigo=self._text_any(servico, ("ItemListaServico", "CodigoTributacaoMunicipio")) or "",
            descricao=_norm_ws(self._text(servico, "Discriminacao")),
            quantidade=1.0,
            valor_unitario=valor,
            valor_total=valor,
            iss=TributoItem(
                aliquota=self._num(self._text(valores, "Aliquota"), f"{campo}.Aliquota", falhas),
                valor=self._num(self._text(valores, "ValorIss"), f"{campo}.ValorIss", falhas),
                base_calculo=self._num(self._text(valores, "BaseCalculo"), f"{campo}.BaseCalculo", falhas),
            ),
        )

    # ==================== MDFe ====================
    def _extrair_mdfe(self, root: ET.Element, falhas: List[FormatError]) -> DocumentoFiscal:
        inf = self._raiz(root, "infMDFe")
        ide = self._find(inf, "ide")
        emit = self._find(inf, "emit")
        tot = self._find(inf, "tot")
        status, codigo, protocolo = self._autorizacao(self._find(root, "protMDFe"))

        return DocumentoFiscal(
            tipo_documento=TipoDocumento.MDFE,
            numero_documento=self._text(ide, "nMDF") or "",
            serie=self._text(ide, "serie") or "",
            data_emissao=data_tolerante(self._text_any(ide, ("dhEmi", "dEmi")), "ide.dhEmi", falhas, com_hora=True),
            valor_total=self._num(self._text(tot, "vCarga"), "tot.vCarga", falhas),
            cnpj_emitente=_only_digits(self._text(emit, "CNPJ")),
            chave_acesso=_only_digits(inf.get("Id")) or _only_digits(self._first_text_by_local_name(root, "chMDFe")),
            protocolo=protocolo,
            status=status,
            observacoes=self._observacoes(self._text(self._find(inf, "infAdic"), "infCpl")),
            nome_emitente=_norm_ws(self._text(emit, "xNome")),
            ie_emitente=_only_digits(self._text(emit, "IE")),
            uf_emitente=(self._text(self._find(emit, "enderEmit"), "UF") or "").upper(),
            codigo_status=codigo,
            falhas_formato=tuple(falhas),
        )

    # ==================== Comuns ====================
    def _autorizacao(self, prot: Optional[ET.Element]) -> Tuple[StatusAutorizacao, str, str]:
        """(status, cStat, nProt). Sem protocolo: AUTORIZADA e cStat vazio."""
        if prot is None:
            return StatusAutorizacao.AUTORIZADA, "", ""
        cstat = self._first_text_by_local_name(prot, "cStat") or ""
        protocolo = self._first_text_by_local_name(prot, "nProt") or ""
        status = STATUS_POR_CSTAT.get(cstat)
        if status is None:
            log.warning("cStat '%s' fora da tabela conhecida; assumindo autorizada (revisar).", cstat)
            status = StatusAutorizacao.AUTORIZADA
        return status, cstat, protocolo

    def _documento_destinatario(self, dest: Optional[ET.Element]) -> Tuple[str, str]:
        cnpj = _only_digits(self._text(dest, "CNPJ"))
        if cnpj:
            return cnpj, ""
        return "", _only_digits(self._text(dest, "CPF"))

    @staticmethod
    def _observacoes(texto: Optional[str]) -> Optional[str]:
        texto = _norm_ws(texto)
        return texto or None

    @staticmethod
    def _num(texto: Optional[str], campo: str, falhas: List[FormatError]) -> float:
        return numero_tolerante(texto, campo, falhas)

    # ---------- XML helpers tolerantes a namespace ----------
    def _iter_local(self, node: ET.Element, local: str) -> Iterable[ET.Element]:
        lname = local.lower()
        for el in node.iter():
            if el.tag.split("}", 1)[-1].lower() == lname:
                yield el

    def _find(self, node: Optional[ET.Element], local: str) -> Optional[ET.Element]:
        if node is None:
            return None
        for el in self._iter_local(node, local):
            return el
        return None

    def _findall(self, node: Optional[ET.Element], local: str) -> List[ET.Element]:
        if node is None:
            return []
        return list(self._iter_local(node, local))

    def _first_text_by_local_name(self, node: Optional[ET.Element], local_name: str) -> Optional[str]:
        if node is None:
            return None
        for el in self._iter_local(node, local_name):
            if el.text and el.text.strip():
                return el.text.strip()
        return None

    def _text(self, node: Optional[ET.Element], tag_name: str) -> Optional[str]:
        """Texto de um filho direto (sem descer na árvore)."""
        if node is None:
            return None
        for child in node:
            tag = child.tag.split("}", 1)[-1]
            if tag.lower() == tag_name.lower():
                return child.text.strip() if child.text else None
        return None

    def _text_any(self, node: Optional[ET.Element], tag_names: Iterable[str]) -> Optional[str]:
        if node is None:
            return None
        for t in tag_names:
            v = self._text(node, t)
            if v:
                return v
        return None


__all__ = ["ExtratorXMLFiscal", "inferir_tipo_documento", "STATUS_POR_CSTAT"]
