# extratores/sped.py
"""
Leitura de arquivos SPED (EFD ICMS/IPI e EFD Contribuições).

O parsing é uma passada única que mantém só os registros de interesse.
A consolidação é uma segunda passada: cada C100 define o cabeçalho
corrente e cada C170 seguinte é pareado com ele. C170 antes de qualquer
C100 é descartado sem erro.

Os deslocamentos dos campos ficam em tabelas por versão de leiaute
(COD_VER do registro 0000). Versão ausente ou desconhecida usa o leiaute
mais recente, com aviso no log.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple, Union

from erros import FormatError
from modelos import (
    ApuracaoIcmsIpi, ApuracaoPisCofins, DadosEmpresa, DocumentoSped, Endereco,
    ItemConsolidado, Produto, RegistroSped, VarianteSped,
)
from .utils import log, _only_digits, data_tolerante, decodificar_texto, numero_tolerante

Leiaute = Mapping[str, Mapping[str, int]]


def _leiaute(registros: Dict[str, Dict[str, int]]) -> Leiaute:
    return MappingProxyType({reg: MappingProxyType(campos) for reg, campos in registros.items()})


# ==================== Leiautes ====================

_C100 = {"IND_OPER": 1, "IND_EMIT": 2, "COD_PART": 3, "COD_MOD": 4, "COD_SIT": 5, "SER": 6,
         "NUM_DOC": 7, "CHV_NFE": 8, "DT_DOC": 9, "DT_E_S": 10, "VL_DOC": 11}
_C170 = {"NUM_ITEM": 1, "COD_ITEM": 2, "DESCR_COMPL": 3, "QTD": 4, "UNID": 5, "VL_ITEM": 6,
         "CST_ICMS": 9, "CFOP": 10, "VL_BC_ICMS": 12, "ALIQ_ICMS": 13, "VL_ICMS": 14,
         "VL_BC_IPI": 21, "ALIQ_IPI": 22, "VL_IPI": 23,
         "CST_PIS": 24, "VL_BC_PIS": 25, "ALIQ_PIS": 26, "VL_PIS": 29,
         "CST_COFINS": 30, "VL_BC_COFINS": 31, "ALIQ_COFINS": 32, "VL_COFINS": 35}
_0150 = {"COD_PART": 1, "NOME": 2, "COD_PAIS": 3, "CNPJ": 4, "CPF": 5, "IE": 6, "COD_MUN": 7}
_0200 = {"COD_ITEM": 1, "DESCR_ITEM": 2, "UNID_INV": 5, "TIPO_ITEM": 6, "COD_NCM": 7}

# EFD ICMS/IPI: leiautes 014 (2020) a 019 (2025) não mudaram os registros lidos aqui.
_LEIAUTE_FISCAL = _leiaute({
    "0000": {"COD_VER": 1, "COD_FIN": 2, "DT_INI": 3, "DT_FIN": 4, "NOME": 5, "CNPJ": 6, "CPF": 7,
             "UF": 8, "IE": 9, "COD_MUN": 10, "IM": 11, "IND_PERFIL": 13},
    "0005": {"FANTASIA": 1, "CEP": 2, "END": 3, "NUM": 4, "COMPL": 5, "BAIRRO": 6},
    "0150": _0150,
    "0200": _0200,
    "C100": _C100,
    "C170": _C170,
    "C190": {"CST_ICMS": 1, "CFOP": 2, "ALIQ_ICMS": 3, "VL_OPR": 4, "VL_BC_ICMS": 5, "VL_ICMS": 6,
             "VL_BC_ICMS_ST": 7, "VL_ICMS_ST": 8, "VL_RED_BC": 9, "VL_IPI": 10},
})

# EFD Contribuições: leiautes 004 a 006.
_LEIAUTE_CONTRIBUICOES = _leiaute({
    "0000": {"COD_VER": 1, "TIPO_ESCRIT": 2, "DT_INI": 5, "DT_FIN": 6, "NOME": 7, "CNPJ": 8,
             "UF": 9, "COD_MUN": 10},
    "0140": {"COD_EST": 1, "NOME": 2, "CNPJ": 3, "UF": 4, "IE": 5, "COD_MUN": 6, "IM": 7},
    "0150": _0150,
    "0200": _0200,
    "C100": _C100,
    "C170": _C170,
    "M100": {"COD_CRED": 1, "VL_BC_PIS": 3, "ALIQ_PIS": 4, "VL_CRED": 7},
    "M200": {"VL_TOT_CONT_NC_PER": 1, "VL_TOT_CONT_CUM_PER": 8, "VL_TOT_CONT_REC": 12},
    "M500": {"COD_CRED": 1, "VL_BC_COFINS": 3, "ALIQ_COFINS": 4, "VL_CRED": 7},
    "M600": {"VL_TOT_CONT_NC_PER": 1, "VL_TOT_CONT_CUM_PER": 8, "VL_TOT_CONT_REC": 12},
})

LEIAUTES: Mapping[VarianteSped, Mapping[str, Leiaute]] = MappingProxyType({
    VarianteSped.FISCAL: MappingProxyType({v: _LEIAUTE_FISCAL for v in ("014", "015", "016", "017", "018", "019")}),
    VarianteSped.CONTRIBUICOES: MappingProxyType({v: _LEIAUTE_CONTRIBUICOES for v in ("004", "005", "006")}),
})


def leiaute_para(doc: DocumentoSped) -> Leiaute:
    tabela = LEIAUTES[doc.variante]
    leiaute = tabela.get(doc.versao_layout)
    if leiaute is None:
        mais_recente = max(tabela)
        log.warning("SPED %s: versão de leiaute '%s' desconhecida; usando %s.",
                    doc.variante.value, doc.versao_layout or "(ausente)", mais_recente)
        leiaute = tabela[mais_recente]
    return leiaute


def _campo(leiaute: Leiaute, reg: RegistroSped, nome: str) -> str:
    return reg.campo(leiaute[reg.registro][nome])


def _numero(leiaute: Leiaute, reg: RegistroSped, nome: str, falhas: Optional[List[FormatError]]) -> float:
    return numero_tolerante(_campo(leiaute, reg, nome), f"{reg.registro}.{nome} (linha {reg.linha})", falhas)


def _data(leiaute: Leiaute, reg: RegistroSped, nome: str, falhas: Optional[List[FormatError]]) -> Optional[date]:
    return data_tolerante(_campo(leiaute, reg, nome), f"{reg.registro}.{nome} (linha {reg.linha})", falhas)


# ==================== Parsing ====================

def dividir_linha(linha: str) -> List[str]:
    """Divide em '|' descartando só os tokens vazios das pontas; campos vazios internos mantêm a posição."""
    partes = linha.strip().split("|")
    inicio, fim = 0, len(partes)
    while inicio < fim and not partes[inicio].strip():
        inicio += 1
    while fim > inicio and not partes[fim - 1].strip():
        fim -= 1
    return partes[inicio:fim]


class ExtratorSped:
    VARIANTE: VarianteSped = VarianteSped.FISCAL
    REGISTROS: FrozenSet[str] = frozenset()

    def parse_content(self, texto: str) -> DocumentoSped:
        registros: List[RegistroSped] = []
        versao = ""
        descartadas = 0
        for n, linha in enumerate(texto.splitlines(), start=1):
            if not linha.strip():
                continue
            campos = dividir_linha(linha)
            if len(campos) < 2 or campos[0] not in self.REGISTROS:
                descartadas += 1
                continue
            reg = RegistroSped(registro=campos[0], campos=tuple(campos), linha=n)
            if reg.registro == "0000" and not versao:
                versao = reg.campo(1)
            registros.append(reg)
        log.info("SPED %s: %d registros mantidos, %d linhas ignoradas (leiaute %s).",
                 self.VARIANTE.value, len(registros), descartadas, versao or "?")
        return DocumentoSped(variante=self.VARIANTE, registros=tuple(registros), versao_layout=versao)

    def parse_file(self, caminho: Union[str, Path]) -> DocumentoSped:
        texto, _ = decodificar_texto(Path(caminho).read_bytes())
        return self.parse_content(texto)


class ExtratorSpedFiscal(ExtratorSped):
    VARIANTE = VarianteSped.FISCAL
    REGISTROS = frozenset({"0000", "0005", "0100", "0150", "0200", "C001", "C100", "C170", "C190", "C990"})


class ExtratorSpedContribuicoes(ExtratorSped):
    VARIANTE = VarianteSped.CONTRIBUICOES
    REGISTROS = frozenset({"0000", "0100", "0140", "0150", "0200", "C100", "C170",
                           "M100", "M200", "M500", "M600", "F600", "F700", "F800", "F990"})


# ==================== Consolidação ====================

def parear_registros(registros, cabecalho: str = "C100",
                     detalhe: str = "C170") -> Iterator[Tuple[RegistroSped, RegistroSped]]:
    """(cabeçalho corrente, detalhe) para cada detalhe visto com cabeçalho ativo."""
    corrente: Optional[RegistroSped] = None
    for reg in registros:
        if reg.registro == cabecalho:
            corrente = reg
        elif reg.registro == detalhe and corrente is not None:
            yield corrente, reg


def _participantes(doc: DocumentoSped, leiaute: Leiaute) -> Dict[str, str]:
    tabela: Dict[str, str] = {}
    for reg in doc.todos("0150"):
        doc_id = _only_digits(_campo(leiaute, reg, "CNPJ")) or _only_digits(_campo(leiaute, reg, "CPF"))
        if doc_id:
            tabela[_campo(leiaute, reg, "COD_PART")] = doc_id
    return tabela


def _id_declarante(doc: DocumentoSped, leiaute: Leiaute) -> str:
    """CNPJ (ou CPF, no leiaute fiscal) do 0000."""
    abertura = doc.primeiro("0000")
    if abertura is None:
        return ""
    doc_id = _only_digits(_campo(leiaute, abertura, "CNPJ"))
    if not doc_id and "CPF" in leiaute["0000"]:
        doc_id = _only_digits(_campo(leiaute, abertura, "CPF"))
    return doc_id


def _produtos(doc: DocumentoSped, leiaute: Leiaute) -> Dict[str, Tuple[str, str]]:
    return {
        _campo(leiaute, reg, "COD_ITEM"): (_campo(leiaute, reg, "DESCR_ITEM"), _only_digits(_campo(leiaute, reg, "COD_NCM")))
        for reg in doc.todos("0200")
    }


def _consolidar(doc: DocumentoSped, campo_cst: str, falhas: Optional[List[FormatError]]) -> List[ItemConsolidado]:
    leiaute = leiaute_para(doc)
    participantes = _participantes(doc, leiaute)
    produtos = _produtos(doc, leiaute)
    declarante = _id_declarante(doc, leiaute)

    itens: List[ItemConsolidado] = []
    for c100, c170 in parear_registros(doc.registros):
        # IND_EMIT 0: emissão própria, o emitente é o declarante e COD_PART a contraparte
        if _campo(leiaute, c100, "IND_EMIT") == "0":
            emitente = declarante
        else:
            emitente = participantes.get(_campo(leiaute, c100, "COD_PART"), "")
        cod_item = _campo(leiaute, c170, "COD_ITEM")
        descricao, ncm = produtos.get(cod_item, ("", ""))
        itens.append(ItemConsolidado(
            documento=_campo(leiaute, c100, "NUM_DOC"),
            data=_data(leiaute, c100, "DT_DOC", falhas),
            cnpj=emitente,
            chave=_campo(leiaute, c100, "CHV_NFE"),
            produto=cod_item,
            descricao=descricao or _campo(leiaute, c170, "DESCR_COMPL"),
            ncm=ncm,
            cfop=_campo(leiaute, c170, "CFOP"),
            cst=_campo(leiaute, c170, campo_cst),
            quantidade=_numero(leiaute, c170, "QTD", falhas),
            valor=_numero(leiaute, c170, "VL_ITEM", falhas),
            base_icms=_numero(leiaute, c170, "VL_BC_ICMS", falhas),
            valor_icms=_numero(leiaute, c170, "VL_ICMS", falhas),
            base_ipi=_numero(leiaute, c170, "VL_BC_IPI", falhas),
            valor_ipi=_numero(leiaute, c170, "VL_IPI", falhas),
            base_pis=_numero(leiaute, c170, "VL_BC_PIS", falhas),
            valor_pis=_numero(leiaute, c170, "VL_PIS", falhas),
            base_cofins=_numero(leiaute, c170, "VL_BC_COFINS", falhas),
            valor_cofins=_numero(leiaute, c170, "VL_COFINS", falhas),
        ))
    return itens


def consolidar_icms_ipi(doc: DocumentoSped, falhas: Optional[List[FormatError]] = None) -> List[ItemConsolidado]:
    """Itens C170 pareados com o C100 corrente; CST é o de ICMS."""
    return _consolidar(doc, "CST_ICMS", falhas)


def consolidar_pis_cofins(doc: DocumentoSped, falhas: Optional[List[FormatError]] = None) -> List[ItemConsolidado]:
    """Itens C170 pareados com o C100 corrente; CST é o de PIS."""
    return _consolidar(doc, "CST_PIS", falhas)


def apuracao_icms_ipi(doc: DocumentoSped, falhas: Optional[List[FormatError]] = None) -> List[ApuracaoIcmsIpi]:
    leiaute = leiaute_para(doc)
    return [
        ApuracaoIcmsIpi(
            cst=_campo(leiaute, reg, "CST_ICMS"),
            cfop=_campo(leiaute, reg, "CFOP"),
            aliquota=_numero(leiaute, reg, "ALIQ_ICMS", falhas),
            valor_operacao=_numero(leiaute, reg, "VL_OPR", falhas),
            base_icms=_numero(leiaute, reg, "VL_BC_ICMS", falhas),
            valor_icms=_numero(leiaute, reg, "VL_ICMS", falhas),
            base_icms_st=_numero(leiaute, reg, "VL_BC_ICMS_ST", falhas),
            valor_icms_st=_numero(leiaute, reg, "VL_ICMS_ST", falhas),
            valor_reducao_base=_numero(leiaute, reg, "VL_RED_BC", falhas),
            valor_ipi=_numero(leiaute, reg, "VL_IPI", falhas),
        )
        for reg in doc.todos("C190")
    ]


_APURACAO_PIS_COFINS = {
    # registro: (tributo, natureza, campo base, campo alíquota, campo valor)
    "M100": ("PIS", "credito", "VL_BC_PIS", "ALIQ_PIS", "VL_CRED"),
    "M200": ("PIS", "contribuicao", None, None, "VL_TOT_CONT_NC_PER"),
    "M500": ("COFINS", "credito", "VL_BC_COFINS", "ALIQ_COFINS", "VL_CRED"),
    "M600": ("COFINS", "contribuicao", None, None, "VL_TOT_CONT_NC_PER"),
}


def apuracao_pis_cofins(doc: DocumentoSped, falhas: Optional[List[FormatError]] = None) -> List[ApuracaoPisCofins]:
    leiaute = leiaute_para(doc)
    apuracoes: List[ApuracaoPisCofins] = []
    for reg in doc.registros:
        regra = _APURACAO_PIS_COFINS.get(reg.registro)
        if regra is None:
            continue
        tributo, natureza, campo_base, campo_aliq, campo_valor = regra
        apuracoes.append(ApuracaoPisCofins(
            tributo=tributo,
            natureza=natureza,
            registro=reg.registro,
            base_calculo=_numero(leiaute, reg, campo_base, falhas) if campo_base else 0.0,
            aliquota=_numero(leiaute, reg, campo_aliq, falhas) if campo_aliq else 0.0,
            valor=_numero(leiaute, reg, campo_valor, falhas),
        ))
    return apuracoes


def consolidar_apuracao(doc: DocumentoSped, falhas: Optional[List[FormatError]] = None):
    """Totais do período, sem pareamento: C190 (fiscal) ou M100/M200/M500/M600 (contribuições)."""
    if doc.variante == VarianteSped.FISCAL:
        return apuracao_icms_ipi(doc, falhas)
    return apuracao_pis_cofins(doc, falhas)


# ==================== Abertura ====================

def periodo(doc: DocumentoSped, falhas: Optional[List[FormatError]] = None) -> Tuple[Optional[date], Optional[date]]:
    abertura = doc.primeiro("0000")
    if abertura is None:
        return None, None
    leiaute = leiaute_para(doc)
    return _data(leiaute, abertura, "DT_INI", falhas), _data(leiaute, abertura, "DT_FIN", falhas)


def cadastro_produtos(doc: DocumentoSped) -> Tuple[Produto, ...]:
    """Registros 0200, na ordem do arquivo."""
    leiaute = leiaute_para(doc)
    return tuple(
        Produto(
            codigo=_campo(leiaute, reg, "COD_ITEM"),
            descricao=_campo(leiaute, reg, "DESCR_ITEM"),
            ncm=_only_digits(_campo(leiaute, reg, "COD_NCM")),
            unidade=_campo(leiaute, reg, "UNID_INV"),
        )
        for reg in doc.todos("0200")
    )


def dados_empresa(doc: DocumentoSped) -> DadosEmpresa:
    """Dados do contribuinte a partir do 0000 (e 0005 / 0140 conforme a variante)."""
    abertura = doc.primeiro("0000")
    if abertura is None:
        return DadosEmpresa()
    leiaute = leiaute_para(doc)
    cnpj = _id_declarante(doc, leiaute)

    if doc.variante == VarianteSped.FISCAL:
        compl = doc.primeiro("0005")
        endereco = Endereco(
            logradouro=_campo(leiaute, compl, "END") if compl else "",
            numero=_campo(leiaute, compl, "NUM") if compl else "",
            complemento=_campo(leiaute, compl, "COMPL") if compl else "",
            bairro=_campo(leiaute, compl, "BAIRRO") if compl else "",
            municipio=_campo(leiaute, abertura, "COD_MUN"),
            uf=_campo(leiaute, abertura, "UF").upper(),
            cep=_only_digits(_campo(leiaute, compl, "CEP")) if compl else "",
        )
        return DadosEmpresa(
            cnpj=cnpj,
            razao_social=_campo(leiaute, abertura, "NOME"),
            nome_fantasia=_campo(leiaute, compl, "FANTASIA") if compl else "",
            ie=_only_digits(_campo(leiaute, abertura, "IE")),
            im=_campo(leiaute, abertura, "IM"),
            endereco=endereco,
        )

    estab = doc.primeiro("0140")
    return DadosEmpresa(
        cnpj=cnpj,
        razao_social=_campo(leiaute, abertura, "NOME"),
        ie=_only_digits(_campo(leiaute, estab, "IE")) if estab else "",
        im=_campo(leiaute, estab, "IM") if estab else "",
        endereco=Endereco(
            municipio=_campo(leiaute, abertura, "COD_MUN"),
            uf=_campo(leiaute, abertura, "UF").upper(),
        ),
    )


__all__ = [
    "LEIAUTES", "leiaute_para", "dividir_linha", "parear_registros",
    "ExtratorSped", "ExtratorSpedFiscal", "ExtratorSpedContribuicoes",
    "consolidar_icms_ipi", "consolidar_pis_cofins", "consolidar_apuracao",
    "apuracao_icms_ipi", "apuracao_pis_cofins", "periodo", "cadastro_produtos", "dados_empresa",
]
