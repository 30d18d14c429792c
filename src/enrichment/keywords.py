"""
Deterministic fallbacks shared by both enrichment cascades.

- keyword_classify: matches title + description against one per-category
  keyword table (keyed by category name) and returns the matching ids
- guess_language: scores text against small stop-word lists and returns the
  best-scoring language, ties going to the default language

Both tables are plain data and can be replaced from config
(enrichment.category_keywords, enrichment.languages).
"""
from typing import Dict, List, Optional, Any, Iterable

from ..utils.text_utils import fold_text, contains_term, tokenize


DEFAULT_CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    'Partidos': ['partido', 'vs', 'victoria', 'derrota', 'empate', 'gol', 'resultado'],
    'Entrenamiento': ['entrenamiento', 'práctica', 'preparación', 'ejercicio', 'sesión'],
    'Rueda de prensa': ['rueda de prensa', 'conferencia', 'declaraciones'],
    'Entrevistas': ['entrevista', 'habla', 'conversación', 'charla'],
    'Análisis': ['análisis', 'táctico', 'estadísticas', 'desempeño', 'evaluación'],
    'Noticias': ['noticia', 'actualidad', 'último momento', 'información', 'comunicado'],
    'Highlights': ['highlights', 'mejores momentos', 'resumen', 'jugadas', 'goles'],
    'Fichajes': ['fichaje', 'transferencia', 'mercado', 'contrato', 'firma', 'nuevo jugador'],
    'Leyendas': ['leyenda', 'histórico', 'clásico', 'retirado', 'pasado', 'homenaje'],
    'Afición': ['afición', 'hinchas', 'fans', 'colchoneros', 'grada', 'celebración'],
}

DEFAULT_LANGUAGES: Dict[str, Dict[str, Any]] = {
    'es': {
        'stopwords': ['la', 'el', 'los', 'las', 'de', 'con', 'por', 'para', 'en', 'y', 'que', 'del', 'al', 'es'],
        'bonus_chars': 'áéíóúüñ',
        'bonus': 5,
    },
    'en': {
        'stopwords': ['the', 'and', 'of', 'to', 'in', 'is', 'on', 'at', 'for', 'with', 'by', 'about'],
    },
    'pt': {
        'stopwords': ['os', 'do', 'da', 'dos', 'das', 'com', 'não', 'uma', 'um', 'para', 'em', 'no', 'na'],
    },
    'fr': {
        'stopwords': ['le', 'les', 'des', 'du', 'et', 'est', 'une', 'un', 'pour', 'avec', 'dans', 'sur', 'pas'],
    },
    'it': {
        'stopwords': ['il', 'gli', 'della', 'delle', 'di', 'che', 'nella', 'per', 'con', 'una', 'nel', 'sono'],
    },
}


def keyword_matches(text: str, table: Optional[Dict[str, List[str]]] = None) -> List[str]:
    """Category names whose keywords occur in text (table order)"""
    table = table or DEFAULT_CATEGORY_KEYWORDS
    folded = fold_text(text)
    return [name for name, keywords in table.items()
            if any(contains_term(folded, keyword) for keyword in keywords)]


def keyword_classify(title: str, description: str, categories: Iterable[Any],
                     table: Optional[Dict[str, List[str]]] = None) -> List[int]:
    """Ids of the available categories whose keywords occur in title + description.

    Args:
        categories: objects with id and name (Category rows, or dicts)
        table: category name -> keywords; DEFAULT_CATEGORY_KEYWORDS when omitted

    Returns:
        Matching category ids, possibly empty
    """
    matched = {fold_text(name) for name in keyword_matches(f"{title or ''} {description or ''}", table)}
    ids = []
    for category in categories:
        category_id, name = _category_fields(category)
        if fold_text(name) in matched and category_id not in ids:
            ids.append(category_id)
    return ids


def guess_language(text: str, languages: Optional[Dict[str, Dict[str, Any]]] = None,
                   default: str = 'en') -> str:
    """Best-scoring language code for text; ties (and no evidence at all) go to default."""
    languages = languages or DEFAULT_LANGUAGES
    tokens = tokenize(text)
    raw = (text or '').lower()

    scores: Dict[str, int] = {}
    for code, profile in languages.items():
        stopwords = {fold_text(w) for w in profile.get('stopwords', [])}
        score = sum(1 for token in tokens if token in stopwords)
        bonus_chars = profile.get('bonus_chars')
        if bonus_chars and any(c in raw for c in bonus_chars):
            score += int(profile.get('bonus', 0))
        scores[code] = score

    if not scores:
        return default
    best = max(scores.values())
    leaders = [code for code, score in scores.items() if score == best]
    if best == 0 or len(leaders) > 1:
        return default
    return leaders[0]


def _category_fields(category: Any):
    if isinstance(category, dict):
        return category['id'], category.get('name', '')
    return category.id, category.name
