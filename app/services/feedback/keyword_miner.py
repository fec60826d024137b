"""
Keyword Miner

Counts recurring complaint topics in the free-text answers of negative
(rating <= 3) responses against a fixed hospitality issue vocabulary.
"""

from typing import Iterable, Optional

TOP_ISSUES_LIMIT = 5

ISSUE_VOCABULARY: tuple[str, ...] = (
    # Service speed
    "lento", "tarda", "espera", "tiempo", "hora", "minutos",
    # Staff attitude
    "mesero", "camarero", "personal", "atención", "atencion", "actitud", "grocero", "grosero", "maleducado",
    "gerente", "encargado", "dueño", "administrador",
    "servicio", "pésimo", "pesimo", "malo", "terrible", "horrible",
    # Food and drink quality
    "comida", "alimento", "sabor", "insípido", "feo", "asco", "crudo", "quemado", "salado", "fría", "fria",
    "bebida", "refresco", "cerveza", "alcohol", "trago", "agua", "hielo",
    "carne", "pollo", "pescado", "pizza", "hamburguesa", "taco",
    # Cleanliness
    "sucio", "limpieza", "olor", "mosca", "cucaracha", "rat", "baño", "wc", "sanitario",
    # Noise and ambience
    "ruido", "música", "musica", "volumen", "ambiente",
    # Temperature
    "calor", "frío", "aire", "acondicionado",
    # Furniture
    "mesa", "silla", "incomod",
    # Parking
    "estacionamiento", "valet", "lugar",
    # Pricing
    "caro", "precio", "cuenta", "propina", "cobro", "robo", "costoso",
)

# Inflected forms that a plain substring match on the term would miss.
# Matches are counted under the vocabulary term.
TERM_VARIANTS: dict[str, tuple[str, ...]] = {
    "tarda": ("tardó", "tardo", "tardaron", "tardan", "tardanza"),
    "lento": ("lenta", "lentitud"),
    "grosero": ("grosera",),
    "maleducado": ("maleducada",),
    "malo": ("mala",),
    "crudo": ("cruda",),
    "quemado": ("quemada",),
    "salado": ("salada",),
    "sucio": ("sucia",),
    "costoso": ("costosa",),
}


def match_terms(text: Optional[str], vocabulary: Iterable[str] = ISSUE_VOCABULARY) -> list[str]:
    """Vocabulary terms found in text (case-insensitive substring), each at most once."""
    if not text:
        return []
    lowered = text.lower()
    matched = []
    for term in vocabulary:
        forms = (term,) + TERM_VARIANTS.get(term, ())
        if any(form in lowered for form in forms):
            matched.append(term)
    return matched


def mine_keywords(
    texts: Iterable[Optional[str]],
    counts: Optional[dict[str, int]] = None,
    vocabulary: Iterable[str] = ISSUE_VOCABULARY,
) -> dict[str, int]:
    """
    Accumulate term occurrences over a batch of answer texts.

    A term repeated inside one answer counts once for that answer.
    Pass an existing counts dict to keep accumulating across responses.
    """
    counts = {} if counts is None else counts
    vocabulary = tuple(vocabulary)
    for text in texts:
        for term in match_terms(text, vocabulary):
            counts[term] = counts.get(term, 0) + 1
    return counts


def top_issues(counts: dict[str, int], limit: int = TOP_ISSUES_LIMIT) -> list[tuple[str, int]]:
    """Terms sorted by count descending; ties keep first-seen order."""
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit]
