"""chatnav.brain.arbitrator

Constrained model arbitration for low-confidence selections.

The model sees only the currently unresolved candidates and may answer
with exactly one of:
    {"decision": "select", "choiceId": "<id>", "confidence": <0..1>}
    {"decision": "need_more_info"}
Anything else (timeout, transport error, malformed JSON, unknown id,
confidence below threshold) is an abstain.

HARD RULES:
- Candidate pool is never widened beyond what the caller passed
- choiceId must be a member of the pool before it is trusted
- No field other than decision/choiceId/confidence is honored
- The call is time-boxed; on expiry the turn continues as an abstain
- Same (input, candidate ids, group) within one cycle never re-calls the model
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from chatnav.brain.ollama_client import OllamaClient
from chatnav.context.candidates import CandidateOption
from chatnav.core.config import Config
from chatnav.core.logger import get_logger
from chatnav.core.text_normalize import normalize


class VerdictKind(Enum):
    SELECT = "select"
    NEED_MORE_INFO = "need_more_info"
    ABSTAIN = "abstain"


@dataclass
class ArbiterVerdict:
    """
    Validated arbitration outcome.

    Fields:
        kind: select / need_more_info / abstain
        choice_id: Pool member chosen by the model (select only)
        confidence: Model-reported confidence (select only)
        reason: Why the verdict is an abstain (timeout, transport, malformed,
            out_of_pool, low_confidence, disabled, empty_pool)
        latency_ms: Model round-trip time, 0 when not called
        from_cache: True when returned by the loop guard without a call
        suggestion_order: Pool ids, model choice first when there is one
    """
    kind: VerdictKind
    choice_id: Optional[str] = None
    confidence: float = 0.0
    reason: str = ""
    latency_ms: int = 0
    from_cache: bool = False
    suggestion_order: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "choice_id": self.choice_id,
            "confidence": self.confidence,
            "reason": self.reason,
            "latency_ms": self.latency_ms,
            "from_cache": self.from_cache,
        }


def _abstain(reason: str, pool_ids: Sequence[str]) -> ArbiterVerdict:
    return ArbiterVerdict(kind=VerdictKind.ABSTAIN, reason=reason, suggestion_order=list(pool_ids))


# ============================================================================
# PROMPT + VALIDATION
# ============================================================================

def build_request(text: str, candidates: Sequence[CandidateOption]) -> Dict[str, Any]:
    """Request body shape: {userText, candidates: [{id, label, hint?}]}."""
    items = []
    for c in candidates:
        item = {"id": c.id, "label": c.label}
        if c.source_tag and c.source_tag != "chat":
            item["hint"] = c.source_tag
        items.append(item)
    return {"userText": text, "candidates": items}


def build_prompt(request: Dict[str, Any]) -> str:
    lines = [
        "You pick which option a user meant. Choose ONLY from the options below.",
        "",
        f'User said: "{request["userText"]}"',
        "",
        "Options:",
    ]
    for i, item in enumerate(request["candidates"], start=1):
        hint = f' Hint="{item["hint"]}"' if item.get("hint") else ""
        lines.append(f'[{i}] ID="{item["id"]}" Label="{item["label"]}"{hint}')
    lines.extend([
        "",
        "Reply with JSON only, one of:",
        '{"decision": "select", "choiceId": "<ID from the list>", "confidence": <0.0-1.0>}',
        '{"decision": "need_more_info"}',
        "If unsure, reply need_more_info.",
    ])
    return "\n".join(lines)


def validate_reply(
    reply: Any,
    pool_ids: Sequence[str],
    min_confidence: Optional[float] = None,
) -> ArbiterVerdict:
    """
    Validate a raw model reply against the candidate pool.

    Args:
        reply: Parsed JSON reply (anything)
        pool_ids: Ids the model was allowed to choose from
        min_confidence: Override for Config.ARBITER_MIN_CONFIDENCE

    Returns:
        ArbiterVerdict (abstain for every invalid shape)
    """
    threshold = Config.ARBITER_MIN_CONFIDENCE if min_confidence is None else min_confidence
    if not isinstance(reply, dict):
        return _abstain("malformed", pool_ids)

    decision = reply.get("decision")
    if decision == "need_more_info":
        return ArbiterVerdict(kind=VerdictKind.NEED_MORE_INFO, suggestion_order=list(pool_ids))

    if decision != "select":
        return _abstain("malformed", pool_ids)

    choice_id = reply.get("choiceId")
    if not isinstance(choice_id, str) or choice_id not in pool_ids:
        return _abstain("out_of_pool", pool_ids)

    confidence = reply.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return _abstain("malformed", pool_ids)
    confidence = float(confidence)
    if not 0.0 <= confidence <= 1.0:
        return _abstain("malformed", pool_ids)
    if confidence < threshold:
        return _abstain("low_confidence", pool_ids)

    order = [choice_id] + [i for i in pool_ids if i != choice_id]
    return ArbiterVerdict(
        kind=VerdictKind.SELECT,
        choice_id=choice_id,
        confidence=confidence,
        suggestion_order=order,
    )


# ============================================================================
# ARBITRATOR
# ============================================================================

LoopKey = Tuple[str, Tuple[str, ...], str]


class ConstrainedArbitrator:
    """Time-boxed, pool-restricted model arbitration with a per-cycle loop guard."""

    def __init__(
        self,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        min_confidence: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        """
        Args:
            client: Object with generate_json(prompt, model, options, timeout)
                (defaults to an OllamaClient on Config.OLLAMA_BASE_URL)
            model: Model name (defaults to Config.OLLAMA_MODEL)
            timeout_ms: Default time box (defaults to Config.ARBITER_TIMEOUT_MS)
            min_confidence: Select threshold (defaults to Config.ARBITER_MIN_CONFIDENCE)
            enabled: Force on/off (defaults to Config.llm_enabled())
        """
        self.logger = get_logger()
        self.client = client if client is not None else OllamaClient(base_url=Config.OLLAMA_BASE_URL)
        self.model = model or Config.OLLAMA_MODEL
        self.timeout_ms = timeout_ms if timeout_ms is not None else Config.ARBITER_TIMEOUT_MS
        self.min_confidence = Config.ARBITER_MIN_CONFIDENCE if min_confidence is None else min_confidence
        self.enabled = Config.llm_enabled() if enabled is None else enabled
        self.calls = 0
        self._cycle_cache: Dict[LoopKey, ArbiterVerdict] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    @staticmethod
    def loop_key(text: str, candidates: Sequence[CandidateOption], group_id: str = "") -> LoopKey:
        return (normalize(text), tuple(sorted(c.id for c in candidates)), group_id or "")

    def _ensure_executor(self) -> ThreadPoolExecutor:
        """Lazy init; a timed-out request keeps its worker until the socket timeout ends it."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="arbiter")
        return self._executor

    def close(self) -> None:
        """Release the worker threads without waiting on an in-flight request."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def reset_cycle(self) -> None:
        """Forget cached verdicts; called when a clarification cycle ends."""
        self._cycle_cache.clear()

    def arbitrate(
        self,
        text: str,
        candidates: Sequence[CandidateOption],
        timeout_ms: Optional[int] = None,
        group_id: str = "",
    ) -> ArbiterVerdict:
        """
        Ask the model to pick among `candidates`.

        Args:
            text: Raw user input
            candidates: The unresolved pool (never widened)
            timeout_ms: Time box override
            group_id: Group the pool belongs to (part of the loop-guard key)

        Returns:
            ArbiterVerdict
        """
        pool_ids = [c.id for c in candidates]
        if not candidates:
            return _abstain("empty_pool", pool_ids)
        if not self.enabled:
            return _abstain("disabled", pool_ids)

        key = self.loop_key(text, candidates, group_id)
        cached = self._cycle_cache.get(key)
        if cached is not None:
            self.logger.debug(f"[ARBITER] loop guard hit key={key[0]!r} -> {cached.kind.value}")
            return ArbiterVerdict(
                kind=cached.kind,
                choice_id=cached.choice_id,
                confidence=cached.confidence,
                reason=cached.reason,
                latency_ms=0,
                from_cache=True,
                suggestion_order=list(cached.suggestion_order),
            )

        verdict = self._call_model(text, candidates, timeout_ms or self.timeout_ms)
        self._cycle_cache[key] = verdict
        self.logger.info(
            f"[ARBITER] verdict={verdict.kind.value} choice={verdict.choice_id} "
            f"reason={verdict.reason or '-'} latency_ms={verdict.latency_ms} pool={len(pool_ids)}"
        )
        return verdict

    def _call_model(self, text: str, candidates: Sequence[CandidateOption], timeout_ms: int) -> ArbiterVerdict:
        pool_ids = [c.id for c in candidates]
        prompt = build_prompt(build_request(text, candidates))
        options = {
            "temperature": Config.OLLAMA_TEMPERATURE,
            "num_predict": Config.OLLAMA_NUM_PREDICT,
        }
        timeout_sec = timeout_ms / 1000.0

        self.calls += 1
        start = time.time()
        future = self._ensure_executor().submit(self.client.generate_json, prompt, self.model, options, timeout_sec)
        try:
            reply = future.result(timeout=timeout_sec)
        except FutureTimeout:
            future.cancel()
            verdict = _abstain("timeout", pool_ids)
        except ConnectionError as e:
            self.logger.warning(f"[ARBITER] transport failure: {e}")
            verdict = _abstain("transport", pool_ids)
        except ValueError as e:
            self.logger.warning(f"[ARBITER] bad model reply: {e}")
            verdict = _abstain("malformed", pool_ids)
        except Exception as e:
            self.logger.error(f"[ARBITER] unexpected client error: {e}")
            verdict = _abstain("transport", pool_ids)
        else:
            verdict = validate_reply(reply, pool_ids, self.min_confidence)

        verdict.latency_ms = int((time.time() - start) * 1000)
        return verdict
