# __init__.py

from .xml_fiscal import ExtratorXMLFiscal, inferir_tipo_documento
from .sped import (
    ExtratorSpedFiscal,
    ExtratorSpedContribuicoes,
    consolidar_icms_ipi,
    consolidar_pis_cofins,
    consolidar_apuracao,
    dados_empresa,
    periodo,
)
from .planilha_icms import ExtratorPlanilhaIcms
from .protege_pdf import ExtratorProtegePdf, interpretar_texto

from .utils import log

__all__ = [
    "ExtratorXMLFiscal",
    "inferir_tipo_documento",
    "ExtratorSpedFiscal",
    "ExtratorSpedContribuicoes",
    "consolidar_icms_ipi",
    "consolidar_pis_cofins",
    "consolidar_apuracao",
    "dados_empresa",
    "periodo",
    "ExtratorPlanilhaIcms",
    "ExtratorProtegePdf",
    "interpretar_texto",
    "log",
]
