# modelos.py
"""
Modelo canônico do ingestor: registros imutáveis produzidos pelos extratores,
pelo validador de integridade e pelo orquestrador.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Tuple

from erros import FormatError, UnsupportedDocumentTypeError


# ==================== Enumerações ====================

class TipoDocumento(str, Enum):
    """Variantes de XML fiscal aceitas pelo extrator."""
    NFE = "nfe"
    CTE = "cte"
    NFSE = "nfse"
    MDFE = "mdfe"

    @classmethod
    def de_valor(cls, valor: Any) -> "TipoDocumento":
        if isinstance(valor, cls):
            return valor
        chave = str(valor or "").strip().lower().replace("-", "").replace("_", "").replace(" ", "")
        tipo = _ALIASES_TIPO_DOCUMENTO.get(chave)
        if tipo is None:
            raise UnsupportedDocumentTypeError(valor)
        return tipo


_ALIASES_TIPO_DOCUMENTO = {
    "nfe": TipoDocumento.NFE, "invoice": TipoDocumento.NFE, "notafiscal": TipoDocumento.NFE,
    "cte": TipoDocumento.CTE, "transportmanifest": TipoDocumento.CTE,
    "nfse": TipoDocumento.NFSE, "serviceinvoice": TipoDocumento.NFSE,
    "mdfe": TipoDocumento.MDFE, "cargomanifest": TipoDocumento.MDFE,
}


class StatusAutorizacao(str, Enum):
    AUTORIZADA = "autorizada"
    CANCELADA = "cancelada"
    DENEGADA = "denegada"


class TipoArquivo(str, Enum):
    XML = "xml"
    SPED = "sped"
    PDF = "pdf"
    PLANILHA = "planilha"


class Severidade(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class VarianteSped(str, Enum):
    FISCAL = "fiscal"
    CONTRIBUICOES = "contribuicoes"


# ==================== XML fiscal ====================

@dataclass(frozen=True)
class TributoItem:
    aliquota: float = 0.0
    valor: float = 0.0
    base_calculo: float = 0.0


@dataclass(frozen=True)
class ItemDocumento:
    codigo: str = ""
    descricao: str = ""
    ncm: str = ""
    cfop: str = ""
    quantidade: float = 0.0
    valor_unitario: float = 0.0
    valor_total: float = 0.0
    cst: str = ""
    icms: Optional[TributoItem] = None
    ipi: Optional[TributoItem] = None
    pis: Optional[TributoItem] = None
    cofins: Optional[TributoItem] = None
    iss: Optional[TributoItem] = None


@dataclass(frozen=True)
class TotaisImpostos:
    valor_icms: float = 0.0
    valor_ipi: float = 0.0
    valor_pis: float = 0.0
    valor_cofins: float = 0.0
    valor_iss: float = 0.0
    base_icms: float = 0.0
    base_pis: float = 0.0
    base_cofins: float = 0.0


@dataclass(frozen=True)
class DocumentoFiscal:
    """
    Saída do extrator XML. Os totais vêm dos nós de cabeçalho (vNF, ICMSTot,
    vTPrest...) e nunca da soma dos itens.
    """
    tipo_documento: TipoDocumento
    numero_documento: str = ""
    serie: str = ""
    data_emissao: Optional[datetime] = None
    valor_total: float = 0.0
    cnpj_emitente: str = ""
    cnpj_destinatario: str = ""
    cpf_destinatario: str = ""
    itens: Tuple[ItemDocumento, ...] = ()
    impostos: TotaisImpostos = field(default_factory=TotaisImpostos)
    chave_acesso: str = ""
    protocolo: str = ""
    status: StatusAutorizacao = StatusAutorizacao.AUTORIZADA
    observacoes: Optional[str] = None
    nome_emitente: str = ""
    ie_emitente: str = ""
    uf_emitente: str = ""
    tipo_operacao: str = ""
    codigo_status: str = ""
    falhas_formato: Tuple[FormatError, ...] = ()


# ==================== SPED ====================

@dataclass(frozen=True)
class RegistroSped:
    registro: str
    campos: Tuple[str, ...]
    linha: int = 0

    def campo(self, indice: int) -> str:
        return self.campos[indice].strip() if 0 <= indice < len(self.campos) else ""


@dataclass(frozen=True)
class DocumentoSped:
    variante: VarianteSped
    registros: Tuple[RegistroSped, ...] = ()
    versao_layout: str = ""

    def primeiro(self, registro: str) -> Optional[RegistroSped]:
        for r in self.registros:
            if r.registro == registro:
                return r
        return None

    def todos(self, registro: str) -> Tuple[RegistroSped, ...]:
        return tuple(r for r in self.registros if r.registro == registro)


@dataclass(frozen=True)
class ItemConsolidado:
    # cabeçalho (C100)
    documento: str
    data: Optional[date]
    cnpj: str
    chave: str = ""
    # detalhe (C170)
    produto: str = ""
    descricao: str = ""
    ncm: str = ""
    cfop: str = ""
    cst: str = ""
    quantidade: float = 0.0
    valor: float = 0.0
    base_icms: float = 0.0
    valor_icms: float = 0.0
    base_ipi: float = 0.0
    valor_ipi: float = 0.0
    base_pis: float = 0.0
    valor_pis: float = 0.0
    base_cofins: float = 0.0
    valor_cofins: float = 0.0


@dataclass(frozen=True)
class ApuracaoIcmsIpi:
    """Linha C190: totais por CST/CFOP/alíquota."""
    cst: str
    cfop: str
    aliquota: float = 0.0
    valor_operacao: float = 0.0
    base_icms: float = 0.0
    valor_icms: float = 0.0
    base_icms_st: float = 0.0
    valor_icms_st: float = 0.0
    valor_reducao_base: float = 0.0
    valor_ipi: float = 0.0


@dataclass(frozen=True)
class ApuracaoPisCofins:
    """Linhas M100/M200 (PIS) e M500/M600 (COFINS)."""
    tributo: str          # PIS | COFINS
    natureza: str         # credito | contribuicao
    registro: str
    base_calculo: float = 0.0
    aliquota: float = 0.0
    valor: float = 0.0


# ==================== Validação ====================

@dataclass(frozen=True)
class ResultadoValidacao:
    campo: str
    valido: bool
    mensagem: str
    severidade: Severidade


@dataclass(frozen=True)
class MetadadosIntegridade:
    tamanho: int = 0
    tipo_arquivo: Optional[TipoArquivo] = None
    extensao: str = ""
    cnpj: Optional[str] = None
    datas: Tuple[str, ...] = ()
    valores_monetarios: bool = False


@dataclass(frozen=True)
class RelatorioIntegridade:
    valido: bool
    checksum: str
    erros: Tuple[str, ...] = ()
    avisos: Tuple[str, ...] = ()
    metadados: MetadadosIntegridade = field(default_factory=MetadadosIntegridade)


# ==================== Regras extraídas (planilha / PDF) ====================

@dataclass(frozen=True)
class RegraIcmsPlanilha:
    ncm: str = ""
    cfop: str = ""
    cst: str = ""
    descricao: str = ""
    aliquota: float = 0.0
    base_reduzida: float = 0.0
    beneficio: str = ""
    tipo_cliente: str = ""
    tipo_operacao: str = ""
    protege: bool = False
    difal: bool = False
    ciap: bool = False


@dataclass(frozen=True)
class BeneficioProtege:
    codigo: str
    descricao: str
    tipo: str             # BASE_REDUZIDA | CREDITO_OUTORGADO | DIFAL | CIAP | OUTROS
    percentuais: Tuple[float, ...] = ()
    condicoes: Tuple[str, ...] = ()
    ativo: bool = True


@dataclass(frozen=True)
class RegraProtege:
    descricao: str
    tipo_protege: str     # PROTEGE_15 | PROTEGE_2
    aliquota_protege: float
    beneficios: Tuple[BeneficioProtege, ...] = ()
    condicoes_elegibilidade: Tuple[str, ...] = ()
    produtos_aplicaveis: Tuple[str, ...] = ()
    ncms: Tuple[str, ...] = ()


# ==================== Envelope do orquestrador ====================

@dataclass(frozen=True)
class Endereco:
    logradouro: str = ""
    numero: str = ""
    complemento: str = ""
    bairro: str = ""
    municipio: str = ""
    uf: str = ""
    cep: str = ""


@dataclass(frozen=True)
class DadosEmpresa:
    cnpj: str = ""
    razao_social: str = ""
    nome_fantasia: str = ""
    ie: str = ""
    im: str = ""
    cnae: str = ""
    endereco: Optional[Endereco] = None
    regime_tributario: str = ""
    data_inicio_atividade: Optional[date] = None
    data_fim_atividade: Optional[date] = None


@dataclass(frozen=True)
class Produto:
    codigo: str = ""
    descricao: str = ""
    ncm: str = ""
    unidade: str = ""
    quantidade: float = 0.0
    valor_unitario: float = 0.0
    valor_total: float = 0.0


@dataclass(frozen=True)
class Operacao:
    tipo: str             # entrada | saida
    cfop: str
    cst: str
    natureza_operacao: str = ""
    valor_operacao: float = 0.0
    base_calculo: float = 0.0
    aliquota: float = 0.0
    valor_imposto: float = 0.0
    data: Optional[date] = None


@dataclass(frozen=True)
class Imposto:
    tipo: str             # ICMS | IPI | PIS | COFINS | ISS
    base_calculo: float = 0.0
    aliquota: float = 0.0
    valor: float = 0.0
    periodo: Optional[date] = None


@dataclass(frozen=True)
class DadosFiscais:
    periodo_inicial: Optional[date] = None
    periodo_final: Optional[date] = None
    total_faturamento: Optional[float] = None
    total_compras: Optional[float] = None
    produtos: Tuple[Produto, ...] = ()
    operacoes: Tuple[Operacao, ...] = ()
    impostos: Tuple[Imposto, ...] = ()
    regras_icms: Tuple[RegraIcmsPlanilha, ...] = ()
    regras_protege: Tuple[RegraProtege, ...] = ()


@dataclass(frozen=True)
class MetadadosDocumento:
    tamanho: int
    checksum: str
    tempo_processamento_ms: int
    versao_parser: str
    encoding: Optional[str] = None


@dataclass(frozen=True)
class DocumentoProcessado:
    id: str
    nome_arquivo: str
    tipo_arquivo: TipoArquivo
    dados_empresa: DadosEmpresa
    dados_fiscais: DadosFiscais
    resultados_validacao: Tuple[ResultadoValidacao, ...]
    metadados: MetadadosDocumento
    extraido_em: datetime
    integridade: Optional[RelatorioIntegridade] = None
    falhas_formato: Tuple[FormatError, ...] = ()

    @property
    def erros_validacao(self) -> Tuple[ResultadoValidacao, ...]:
        return tuple(r for r in self.resultados_validacao if r.severidade == Severidade.ERROR)


__all__ = [
    "TipoDocumento", "StatusAutorizacao", "TipoArquivo", "Severidade", "VarianteSped",
    "TributoItem", "ItemDocumento", "TotaisImpostos", "DocumentoFiscal",
    "RegistroSped", "DocumentoSped", "ItemConsolidado", "ApuracaoIcmsIpi", "ApuracaoPisCofins",
    "ResultadoValidacao", "MetadadosIntegridade", "RelatorioIntegridade",
    "RegraIcmsPlanilha", "BeneficioProtege", "RegraProtege",
    "Endereco", "DadosEmpresa", "Produto", "Operacao", "Imposto", "DadosFiscais",
    "MetadadosDocumento", "DocumentoProcessado",
]
