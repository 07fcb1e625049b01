from __future__ import annotations

from dataclasses import dataclass

from ..context.assembler import ContextAssembler, effective_messages
from ..context.models import AssembledSession
from ..events.recorder import SessionRecorder
from ..util.log import get_logger
from .policy import CompactionPolicy
from .summarizer import ChatProvider, SummaryResult, summarize

logger = get_logger(__name__)


@dataclass
class CompactionResult:
    summary: SummaryResult
    summary_message_id: str
    cutoff_message_id: str
    tokens_before: int


class Compactor:
    """Appends a summary to the log when a session outgrows its token budget.

    Nothing is deleted: the summary is a new message whose part records the
    last message it covers, and prompt building starts after that cutoff.
    """

    def __init__(
        self,
        recorder: SessionRecorder,
        policy: CompactionPolicy | None = None,
        *,
        assembler: ContextAssembler | None = None,
        provider: ChatProvider | None = None,
    ):
        self.recorder = recorder
        self.policy = policy or CompactionPolicy()
        self.assembler = assembler or ContextAssembler()
        self.provider = provider

    def is_eligible(self, assembled: AssembledSession, system: str = "") -> bool:
        return self.policy.should_compact(self.assembler.estimate_tokens(assembled, system))

    async def maybe_compact(self, *, system: str = "", force: bool = False) -> CompactionResult | None:
        assembled = self.assembler.assemble(self.recorder.store.iter_events())
        if assembled is None:
            return None
        tokens = self.assembler.estimate_tokens(assembled, system)
        if not force and not self.policy.should_compact(tokens):
            return None

        messages = effective_messages(assembled.conversation)
        keep = self.policy.keep_recent_messages
        head = messages[:-keep] if keep > 0 else messages
        head = [m for m in head if m.content.strip()]
        if not head:
            logger.info("compaction_skipped", session_id=assembled.session.session_id, reason="nothing to summarize")
            return None

        result = await summarize(self.provider, head, assembled.tool_calls, assembled.conversation.summary)
        cutoff = head[-1].id
        mid = self.recorder.add_summary(result.text, cutoff_message_id=cutoff, tokens_before=tokens)
        logger.info(
            "compaction_appended",
            session_id=assembled.session.session_id,
            tokens_before=tokens,
            threshold=self.policy.threshold,
            cutoff_message_id=cutoff,
        )
        return CompactionResult(result, mid, cutoff, tokens)
