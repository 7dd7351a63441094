"""Rule-based extraction of typed facts from generated summary text.

The rules form a small grammar over the section layout the prompt templates
ask for (``## 📦`` products, ``## ✅`` validation, ``## 🚩`` red flags and a
``Sentiment: X`` line). Bump ``GRAMMAR_VERSION`` whenever a rule changes and
update the fixtures under ``tests/fixtures``.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re

from digest.models import ProductMention, SummaryMetadata

logger = logging.getLogger(__name__)

GRAMMAR_VERSION = 1


def _section(header: str) -> re.Pattern[str]:
    return re.compile(rf"##[ \t]*{header}[^\n]*(.*?)(?=\n[ \t]*##|\Z)", re.DOTALL | re.IGNORECASE)


def _words(*words: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b", re.IGNORECASE)


@dataclass(frozen=True)
class ExtractionGrammar:
    sentiment_patterns: tuple[re.Pattern[str], ...]
    sentiment_labels: tuple[tuple[str, tuple[str, ...]], ...]
    products_section: re.Pattern[str]
    validation_section: re.Pattern[str]
    red_flags_section: re.Pattern[str]
    emphasized_name: re.Pattern[str]
    header_words: tuple[str, ...]
    mention_count: re.Pattern[str]
    price: re.Pattern[str]
    credibility_buckets: tuple[tuple[re.Pattern[str], int], ...]
    positive_words: re.Pattern[str]
    negative_words: re.Pattern[str]
    valid_keywords: tuple[str, ...]
    suspicious_keywords: tuple[str, ...]
    valid_marker: re.Pattern[str]
    suspicious_marker: re.Pattern[str]
    no_red_flags_phrases: tuple[str, ...]
    bullet_line: re.Pattern[str]
    numbered_line: re.Pattern[str]


DEFAULT_GRAMMAR = ExtractionGrammar(
    sentiment_patterns=(
        re.compile(r"sentiment\s+(?:umum|harian|overall|daily)\s*:\s*\**\s*(\w+)", re.IGNORECASE),
        re.compile(r"(?:overall|daily)\s+sentiment\s*:\s*\**\s*(\w+)", re.IGNORECASE),
        re.compile(r"sentiment\s*:\s*\**\s*(\w+)", re.IGNORECASE),
    ),
    sentiment_labels=(
        ("positive", ("positif", "positive")),
        ("negative", ("negatif", "negative")),
        ("neutral", ("netral", "neutral")),
    ),
    products_section=_section(r"📦[ \t]*(?:PAKET/PRODUK|PRODUK/PAKET|PRODUCTS?)"),
    validation_section=_section(r"✅[ \t]*(?:VALIDASI|VALIDATION)"),
    red_flags_section=_section(r"🚩[ \t]*RED[ \t]+FLAGS"),
    emphasized_name=re.compile(r"\*\*([^*\n]+)\*\*"),
    header_words=("Testimon", "Konsensus", "Consensus", "Analisa", "Analysis", "Verdict"),
    mention_count=re.compile(
        r"(?:jumlah\s+|total\s+)?mentions?(?:\s+count)?\s*:\s*(\d+)\s*(?:kali|times?|x)?",
        re.IGNORECASE,
    ),
    price=re.compile(
        r"(?:harga|price)(?:\s+disebutkan|\s+mentioned)?\s*:\s*((?:Rp\.?\s*|\$\s*)?\d[\d.,]*)",
        re.IGNORECASE,
    ),
    credibility_buckets=(
        (_words("high", "tinggi"), 5),
        (_words("medium", "sedang"), 3),
        (_words("low", "rendah"), 1),
    ),
    positive_words=_words("positif", "positive", "bagus", "recommended", "mantap", "oke", "good"),
    negative_words=_words(
        "negatif", "negative", "jelek", "buruk", "tidak", "bad", "komplain", "complaint"
    ),
    valid_keywords=("Valid", "Trustworthy"),
    suspicious_keywords=("Meragukan", "Suspicious"),
    valid_marker=re.compile(r"✅[ \t]*VALID\b"),
    suspicious_marker=re.compile(r"❌[ \t]*SUSPICIOUS\b"),
    no_red_flags_phrases=(
        "tidak ada red flags",
        "tidak ada propaganda",
        "tidak terdeteksi",
        "no red flags",
        "none detected",
    ),
    bullet_line=re.compile(r"^[ \t]*[-*•][ \t]+\S", re.MULTILINE),
    numbered_line=re.compile(r"^[ \t]*(\d{1,2})\.[ \t]+\S", re.MULTILINE),
)


def determine_status(credibility: int, red_flags: int) -> str:
    if red_flags >= 3:
        return "suspicious"
    if credibility >= 4 and red_flags <= 1:
        return "valid"
    if credibility <= 2:
        return "suspicious"
    return "mixed"


def _clamp_score(score: int) -> int:
    return max(1, min(5, score))


class MetadataExtractor:
    def __init__(self, grammar: ExtractionGrammar = DEFAULT_GRAMMAR) -> None:
        self.grammar = grammar

    def extract(self, text: str) -> SummaryMetadata:
        text = text or ""
        sentiment = self.extract_sentiment(text)
        products = self.extract_products(text)
        credibility = self.calculate_credibility(products, text)
        red_flags = self.count_red_flags(text)
        status = determine_status(credibility, red_flags)

        metadata = SummaryMetadata(
            sentiment=sentiment,
            credibility_score=credibility,
            products=products,
            products_json=json.dumps([product.product_name for product in products], ensure_ascii=False),
            red_flags_count=red_flags,
            validation_status=status,
        )
        logger.info(
            "Metadata parsed: sentiment=%s credibility=%d/5 products=%d red_flags=%d status=%s",
            sentiment,
            credibility,
            len(products),
            red_flags,
            status,
        )
        return metadata

    def extract_sentiment(self, text: str) -> str:
        for pattern in self.grammar.sentiment_patterns:
            match = pattern.search(text)
            if not match:
                continue
            raw = match.group(1).strip().lower()
            for label, keywords in self.grammar.sentiment_labels:
                if any(keyword in raw for keyword in keywords):
                    return label
        return "neutral"

    def _sections(self, pattern: re.Pattern[str], text: str) -> str:
        return "\n".join(match.group(1) for match in pattern.finditer(text))

    def extract_products(self, text: str) -> list[ProductMention]:
        section = self._sections(self.grammar.products_section, text)
        if not section:
            logger.debug("No product section found in summary")
            return []

        validation = self._sections(self.grammar.validation_section, text)
        matches = list(self.grammar.emphasized_name.finditer(section))
        products: list[ProductMention] = []
        seen: set[str] = set()

        for position, match in enumerate(matches):
            name = match.group(1).strip()
            if not name or name.lower() in seen:
                continue
            if any(word.lower() in name.lower() for word in self.grammar.header_words):
                continue
            seen.add(name.lower())

            window_end = matches[position + 1].start() if position + 1 < len(matches) else len(section)
            details = section[match.end() : window_end]
            products.append(self._product_details(name, details, validation))

        logger.debug("Extracted %d products from summary", len(products))
        return products

    def _product_details(self, name: str, details: str, validation: str) -> ProductMention:
        product = ProductMention(product_name=name)

        mention = self.grammar.mention_count.search(details)
        if mention and int(mention.group(1)) > 0:
            product.mention_count = int(mention.group(1))

        price = self.grammar.price.search(details)
        if price:
            product.price_mentioned = price.group(1).strip()

        product.credibility_score = self.extract_credibility_score(details)
        product.sentiment = self.extract_product_sentiment(details)
        product.validation_status = self.extract_validation_status(name, validation)
        return product

    def extract_credibility_score(self, details: str) -> int:
        stars = details.count("⭐")
        if 0 < stars <= 5:
            return stars
        for pattern, score in self.grammar.credibility_buckets:
            if pattern.search(details):
                return score
        return 3

    def extract_product_sentiment(self, details: str) -> str:
        if self.grammar.positive_words.search(details):
            return "positive"
        if self.grammar.negative_words.search(details):
            return "negative"
        return "neutral"

    def extract_validation_status(self, name: str, validation: str) -> str:
        verdict = "\n".join(line for line in validation.splitlines() if name in line)
        if not verdict:
            return "mixed"
        if any(keyword in verdict for keyword in self.grammar.valid_keywords):
            return "valid"
        if any(keyword in verdict for keyword in self.grammar.suspicious_keywords):
            return "suspicious"
        return "mixed"

    def extract_overall_credibility(self, text: str) -> int:
        valid = len(self.grammar.valid_marker.findall(text))
        suspicious = len(self.grammar.suspicious_marker.findall(text))
        if valid > suspicious:
            return 5
        if suspicious > valid:
            return 1
        return 3

    def calculate_credibility(self, products: list[ProductMention], text: str) -> int:
        overall = self.extract_overall_credibility(text)
        if not products:
            return overall

        average = sum(product.credibility_score for product in products) // len(products)
        return _clamp_score((average * 7 + overall * 3) // 10)

    def count_red_flags(self, text: str) -> int:
        section = self._sections(self.grammar.red_flags_section, text)
        if not section.strip():
            return 0

        lowered = section.lower()
        if any(phrase in lowered for phrase in self.grammar.no_red_flags_phrases):
            return 0

        bullets = len(self.grammar.bullet_line.findall(section))
        numbered = sum(
            1 for number in self.grammar.numbered_line.findall(section) if 1 <= int(number) <= 10
        )
        return bullets + numbered


_DEFAULT_EXTRACTOR = MetadataExtractor()


def extract_metadata(text: str) -> SummaryMetadata:
    return _DEFAULT_EXTRACTOR.extract(text)
