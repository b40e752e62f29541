"""
Keyword lexicon for the content relevance filter.

All tables are immutable and built once at import time, so they can be
read from any number of request threads.
"""

from types import MappingProxyType
from typing import Mapping

from witnessbox.schemas import Category, CATEGORY_ORDER


OFF_TOPIC_KEYWORDS: Mapping[Category, tuple[str, ...]] = MappingProxyType({
    Category.MATH: (
        "algebra", "calculus", "derivative", "integral", "equation", "formula",
        "polynomial", "matrix", "logarithm", "trigonometry", "geometry", "theorem",
        "proof", "factor", "variable", "coefficient", "quadratic", "linear",
        "exponential", "sine", "cosine", "tangent", "pi", "infinity", "limit",
        "differential", "mathematics", "arithmetic", "fraction", "decimal",
        "percentage", "statistics", "probability", "graph", "coordinate",
        "angle", "radius", "diameter", "circumference", "area", "volume",
        "perimeter", "hypotenuse", "vertex", "slope", "intercept",
    ),
    Category.SCIENCE: (
        "physics", "chemistry", "biology", "cell", "dna", "rna", "gene",
        "chromosome", "protein", "enzyme", "molecule", "atom", "electron",
        "proton", "neutron", "element", "compound", "reaction", "catalyst",
        "photosynthesis", "mitosis", "evolution", "ecosystem", "species",
        "habitat", "organism", "bacteria", "virus", "vaccine", "antibiotic",
        "gravity", "force", "energy", "momentum", "velocity", "acceleration",
        "magnetic", "electric", "circuit", "voltage", "current", "resistance",
        "wave", "frequency", "wavelength", "spectrum", "radiation",
        "nuclear", "atomic", "quantum", "periodic table", "isotope",
    ),
    Category.TECHNOLOGY: (
        "programming", "code", "algorithm", "python", "java", "javascript",
        "html", "css", "sql", "database", "server", "client", "api",
        "function", "variable", "loop", "array", "object", "class",
        "inheritance", "debugging", "compile", "syntax", "framework",
        "library", "software", "hardware", "computer", "processor",
        "memory", "storage", "network", "internet", "website", "application",
        "mobile", "android", "ios", "windows", "linux", "mac",
        "artificial intelligence", "machine learning", "data science",
        "blockchain", "cryptocurrency", "cloud computing",
    ),
    Category.OTHER: (
        "economics", "finance", "accounting", "business", "marketing",
        "psychology", "sociology", "history", "geography", "politics",
        "government", "law", "legal", "philosophy", "theology", "religion",
        "medicine", "medical", "health", "anatomy", "physiology",
        "engineering", "mechanical", "electrical", "civil", "chemical",
    ),
})

LITERATURE_KEYWORDS: tuple[str, ...] = (
    # Characters, places and famous lines
    "princess bride", "westley", "buttercup", "inigo", "montoya", "fezzik",
    "vizzini", "humperdinck", "miracle max", "valerie", "albino", "rugen",
    "morgenstern", "goldman", "florin", "guilder", "cliffs of insanity",
    "fire swamp", "rodents of unusual size", "dread pirate roberts",
    "six fingered man", "as you wish", "hello my name is inigo montoya",
    "you killed my father", "prepare to die", "inconceivable",
    "mostly dead", "all dead", "iocane powder", "battle of wits",

    # Plot vocabulary that would otherwise read as off-topic or alarming
    "murder", "murdered", "kill", "killed", "killing", "death", "die", "dying", "dead",
    "kidnap", "kidnapped", "kidnapping", "capture", "captured", "abduct",
    "torture", "tortured", "pain", "suffering", "machine",
    "poison", "poisoned", "iocane",
    "sword", "fight", "fighting", "duel", "battle", "combat", "fencing",
    "revenge", "vengeance", "avenge",
    "love", "true love", "romance", "marry", "marriage", "wedding", "bride", "groom",
    "giant", "monster", "beast", "rodent", "rous",
    "fire", "swamp", "cliff", "castle", "pit", "despair",
    "miracle", "magic", "witch", "wizard",

    # Literary analysis
    "character", "motivation", "plot", "theme", "symbolism", "metaphor",
    "narrative", "story", "protagonist", "antagonist", "conflict",
    "resolution", "climax", "exposition", "rising action", "falling action",
    "literary device", "irony", "foreshadowing", "allegory", "satire",
    "mood", "tone", "setting", "dialogue", "monologue", "soliloquy",
    "point of view", "first person", "third person", "omniscient",
    "unreliable narrator", "genre", "fiction", "fantasy", "adventure",
    "comedy", "tragedy", "epic", "novel", "book", "chapter",
    "scene", "act", "analysis", "interpretation", "meaning", "significance",
    "author", "reader", "audience", "criticism", "review", "essay",
    "literature", "english", "writing", "text", "passage", "quote",
    "quotation", "excerpt", "evidence", "support", "argument", "thesis",
    "reasoning", "logic", "persuasion", "rhetoric", "style", "voice",
    "diction", "syntax", "structure", "organization", "development",
)


def iter_categories():
    """Yield (category, keywords) pairs in tie-break order."""
    for category in CATEGORY_ORDER:
        yield category, OFF_TOPIC_KEYWORDS[category]
