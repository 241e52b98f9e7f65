"""Per-language stopword filtering for free-text search terms.

The engine's text analyzers drop articles, prepositions and similar function
words at index time. Every query term is required, so keeping such words in
the query would make otherwise good matches disappear. The sets below follow
the standard Lucene ``lang/stopwords_*.txt`` files, trimmed to articles,
prepositions, conjunctions, pronouns and the commonest auxiliaries.
"""
from __future__ import annotations

from typing import Dict, FrozenSet, List, Sequence

STOPWORDS: Dict[str, FrozenSet[str]] = {
    "it": frozenset(
        {
            # articles
            "il", "lo", "la", "i", "gli", "le", "l", "un", "una", "uno",
            # prepositions and contracted forms
            "a", "ad", "al", "alla", "alle", "allo", "agli", "ai",
            "da", "dal", "dalla", "dalle", "dallo", "dagli", "dai",
            "di", "del", "della", "delle", "dello", "degli", "dei",
            "in", "nel", "nella", "nelle", "nello", "negli", "nei",
            "su", "sul", "sulla", "sulle", "sullo", "sugli", "sui",
            "con", "col", "per", "tra", "fra",
            # conjunctions
            "e", "ed", "o", "ma", "che", "se", "come", "non", "ne", "ci",
            # pronouns
            "io", "tu", "lui", "lei", "noi", "voi", "loro",
            "mi", "ti", "si", "vi", "li", "ce", "me",
            # demonstratives
            "questo", "questa", "questi", "queste",
            "quello", "quella", "quelli", "quelle",
            # auxiliaries
            "è", "sono", "ha", "ho", "hai", "hanno",
        }
    ),
    "en": frozenset(
        {
            "a", "an", "and", "are", "as", "at", "be", "but", "by",
            "for", "from", "had", "has", "have", "he", "her", "his",
            "if", "in", "into", "is", "it", "its",
            "no", "not", "of", "on", "or", "our",
            "she", "so", "such", "than", "that", "the", "their", "them",
            "then", "there", "these", "they", "this", "to",
            "was", "we", "were", "what", "which", "who", "will", "with",
            "you", "your",
        }
    ),
    "de": frozenset(
        {
            "der", "die", "das", "den", "dem", "des",
            "ein", "eine", "einem", "einen", "einer", "eines",
            "an", "am", "auf", "aus", "bei", "bis", "durch",
            "für", "gegen", "hinter", "in", "im", "ins",
            "mit", "nach", "neben", "ohne", "seit",
            "über", "um", "unter", "von", "vom", "vor",
            "während", "wegen", "zu", "zum", "zur", "zwischen",
            "und", "oder", "aber", "als", "auch", "da", "dass",
            "denn", "doch", "es", "ich", "ist", "nicht", "noch",
            "nur", "ob", "so", "sich", "sie", "sind", "was",
            "wenn", "wie", "wir",
        }
    ),
    "fr": frozenset(
        {
            "le", "la", "les", "l", "un", "une", "des", "du", "de",
            "à", "au", "aux", "avec", "chez", "dans", "en", "entre",
            "par", "pour", "sans", "sous", "sur", "vers",
            "et", "ou", "mais", "ni", "car", "que", "qui", "dont",
            "ce", "ces", "est", "il", "ils", "elle", "elles",
            "je", "tu", "nous", "vous", "on", "ne", "pas", "se",
            "son", "sa", "ses", "leur", "leurs",
        }
    ),
    "es": frozenset(
        {
            "el", "la", "las", "lo", "los", "un", "una", "unas", "unos",
            "a", "al", "ante", "con", "contra", "de", "del", "desde",
            "en", "entre", "hacia", "hasta", "para", "por",
            "sin", "sobre", "tras",
            "y", "e", "o", "u", "ni", "que", "pero", "como",
            "es", "no", "se", "su", "sus",
            "me", "te", "le", "nos", "os", "les",
        }
    ),
    "pt": frozenset(
        {
            "o", "a", "os", "as", "um", "uma", "uns", "umas",
            "ao", "aos", "da", "das", "de", "do", "dos",
            "em", "na", "nas", "no", "nos", "num", "numa",
            "com", "para", "por", "pelo", "pela", "pelos", "pelas",
            "entre", "sem", "sob", "sobre",
            "e", "ou", "mas", "que", "se", "como",
            "eu", "tu", "ele", "ela", "nós", "eles", "elas",
            "é", "são", "não", "mais",
        }
    ),
    "nl": frozenset(
        {
            "de", "het", "een",
            "aan", "bij", "door", "in", "met", "na", "naar",
            "om", "op", "over", "te", "tot", "uit", "van", "voor",
            "en", "of", "maar", "dat", "die", "dit", "er",
            "hij", "zij", "ze", "ik", "je", "we", "wij",
            "is", "zijn", "was", "niet", "ook", "al", "als",
            "dan", "nog", "wel", "geen", "meer",
        }
    ),
    "ru": frozenset(
        {
            "а", "без", "в", "во", "для", "до", "за", "и", "из",
            "к", "ко", "на", "не", "но", "о", "об", "от",
            "по", "при", "с", "со", "у", "что",
            "как", "или", "это", "все", "он", "она", "они",
            "мы", "вы", "я", "его", "её", "их",
            "был", "была", "были", "будет", "есть",
            "так", "уже", "да", "нет", "ни", "же", "бы",
        }
    ),
}


def filter_search_stopwords(terms: Sequence[str], lang: str) -> List[str]:
    """Drop stopwords for ``lang`` from ``terms``.

    A single term is never dropped, and when every term is a stopword the
    original list comes back unchanged so a non-empty query stays non-empty.
    Unknown languages pass through.
    """
    if len(terms) <= 1:
        return list(terms)
    stopwords = STOPWORDS.get(lang)
    if not stopwords:
        return list(terms)
    filtered = [term for term in terms if term not in stopwords]
    return filtered if filtered else list(terms)
