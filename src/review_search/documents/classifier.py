"""Zero-shot document classification with a Hugging Face NLI pipeline.

Domain hypotheses such as "This is database documentation" are scored
against a sample of the document and the confidences are added to the
keyword area scores in :mod:`.context`. When the model cannot be loaded or
a classification call fails, no scores are returned and the keyword
classification decides alone.
"""

import re
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import SemanticSearchConfig
from ..core.constants import (
    CLASSIFIER_MAX_CHARS, CLASSIFIER_ZERO_SHOT, DEFAULT_CLASSIFIER_MODEL, DOMAIN_MIN_CONFIDENCE,
    TECHNOLOGY_MIN_CONFIDENCE
)
from ..logging import get_logger

logger = get_logger(__name__)

DOMAIN_HYPOTHESIS = "This is {} documentation"
TECHNOLOGY_HYPOTHESIS = "This text is about {}"

# Domain label, the area its confidence is added to, and the weight applied
DOMAIN_AREAS: Tuple[Tuple[str, str, float], ...] = (
    ("frontend/UI", "Frontend", 1.0),
    ("backend/server", "Backend", 1.0),
    ("API", "Backend", 1.0),
    ("database", "Database", 1.0),
    ("data science/ML", "Database", 1.0),
    ("DevOps/infrastructure", "DevOps", 1.0),
    ("testing", "Testing", 1.0),
    ("security", "Security", 1.0),
    ("architecture", "Architecture", 1.0),
    ("developer tooling", "ToolingInternal", 1.0),
    ("general project", "GeneralProjectDoc", 0.5),
)

TECHNOLOGY_CANDIDATE_PATTERN = re.compile(r"(?<![\w.])([a-z][a-z0-9_-]*\.(?:js|py))(?!\w)")
MAX_TECHNOLOGY_CANDIDATES = 20


def technology_candidates(text: str, exclude: Iterable[str] = ()) -> List[str]:
    """Library-like names (``vue.js``, ``numpy.py``) in lowercased text, minus ``exclude``."""
    skip = {item.lower() for item in exclude}
    candidates = [match for match in TECHNOLOGY_CANDIDATE_PATTERN.findall(text) if match not in skip]
    return list(dict.fromkeys(candidates))[:MAX_TECHNOLOGY_CANDIDATES]


class ZeroShotClassifier:
    """Lazily loaded ``zero-shot-classification`` pipeline.

    Loading happens on first use under a lock, since classification runs in
    worker threads. A failed load disables the classifier for the lifetime
    of the instance.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_CLASSIFIER_MODEL,
        device: str = "auto",
        cache_dir: Optional[str] = None,
        pipeline: Any = None
    ) -> None:
        """Initialize the classifier.

        Args:
            model_name: Hugging Face NLI model id
            device: Device to run on ('cpu', 'cuda', 'mps' or 'auto')
            cache_dir: Directory for downloaded model files
            pipeline: Ready pipeline callable, skipping the model download
        """
        self.model_name = model_name
        self.device = device
        self.cache_dir = cache_dir
        self._pipeline = pipeline
        self._load_failed = False
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return not self._load_failed

    def _load(self) -> Any:
        from transformers import AutoModelForSequenceClassification, AutoTokenizer, pipeline

        logger.info("Loading zero-shot classifier", model=self.model_name, cache_dir=self.cache_dir)
        tokenizer = AutoTokenizer.from_pretrained(self.model_name, cache_dir=self.cache_dir)
        model = AutoModelForSequenceClassification.from_pretrained(self.model_name, cache_dir=self.cache_dir)
        options = {} if self.device == "auto" else {"device": self.device}
        return pipeline("zero-shot-classification", model=model, tokenizer=tokenizer, **options)

    def _ensure_pipeline(self) -> Any:
        if self._pipeline is not None or self._load_failed:
            return self._pipeline
        with self._lock:
            if self._pipeline is None and not self._load_failed:
                try:
                    self._pipeline = self._load()
                except Exception as e:
                    self._load_failed = True
                    logger.warning(
                        "Zero-shot classifier unavailable, using keyword classification",
                        model=self.model_name,
                        error=str(e)
                    )
        return self._pipeline

    def _classify(self, text: str, labels: Sequence[str], template: str) -> List[Tuple[str, float]]:
        """(label, confidence) pairs; empty when the pipeline is unavailable or fails."""
        if not labels or not text or not text.strip():
            return []
        pipe = self._ensure_pipeline()
        if pipe is None:
            return []
        try:
            output = pipe(
                text[:CLASSIFIER_MAX_CHARS],
                candidate_labels=list(labels),
                hypothesis_template=template,
                multi_label=True
            )
        except Exception as e:
            logger.warning("Zero-shot classification failed", model=self.model_name, error=str(e))
            return []
        return list(zip(output["labels"], (float(score) for score in output["scores"])))

    def score_areas(self, text: str) -> Dict[str, float]:
        """Area scores from the domain hypotheses that clear the minimum confidence."""
        weights = {label: (area, weight) for label, area, weight in DOMAIN_AREAS}
        scores: Dict[str, float] = {}
        for label, confidence in self._classify(text, list(weights), DOMAIN_HYPOTHESIS):
            if confidence < DOMAIN_MIN_CONFIDENCE or label not in weights:
                continue
            area, weight = weights[label]
            scores[area] = scores.get(area, 0.0) + confidence * weight
        return scores

    def detect_technologies(self, text: str, candidates: Sequence[str]) -> List[str]:
        """Candidates the model confirms the text is about, most confident first."""
        confirmed = [
            (label, confidence)
            for label, confidence in self._classify(text, candidates, TECHNOLOGY_HYPOTHESIS)
            if confidence >= TECHNOLOGY_MIN_CONFIDENCE
        ]
        confirmed.sort(key=lambda item: item[1], reverse=True)
        return [label for label, _ in confirmed]

    def close(self) -> None:
        self._pipeline = None


def build_classifier(settings: SemanticSearchConfig) -> Optional[ZeroShotClassifier]:
    """Zero-shot classifier when configured; None keeps keyword classification."""
    if settings.document_classifier != CLASSIFIER_ZERO_SHOT:
        return None
    return ZeroShotClassifier(
        model_name=settings.document_classifier_model,
        device=settings.embedding_device,
        cache_dir=str(settings.embedding_cache_dir),
    )
