import logging
import uuid
from typing import Optional

from gateway.database import get_db
from gateway.services.events import UsageSummary

logger = logging.getLogger(__name__)


class CostTracker:
    """Persists finished messages and their cost once a stream is ``Done``."""

    async def record_completion(
        self,
        provider: str,
        model_id: str,
        content: str,
        usage: UsageSummary,
        finish_reason: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> str:
        msg_id = str(uuid.uuid4())
        async with get_db() as db:
            await db.execute(
                """INSERT INTO messages
                   (id, conversation_id, role, content, provider, model_id,
                    prompt_tokens, completion_tokens, cost_usd, finish_reason, estimated)
                   VALUES (?, ?, 'assistant', ?, ?, ?, ?, ?, ?, ?, ?)""",
                (msg_id, conversation_id, content, provider, model_id,
                 usage.prompt_tokens, usage.completion_tokens, usage.cost,
                 finish_reason, 1 if usage.estimated else 0),
            )
            await db.execute(
                """INSERT INTO cost_log
                   (conversation_id, message_id, provider, model_id,
                    prompt_tokens, completion_tokens, cost_usd)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (conversation_id, msg_id, provider, model_id,
                 usage.prompt_tokens, usage.completion_tokens, usage.cost),
            )
            await db.commit()
        logger.info(
            "Recorded %s/%s message %s: %d tokens, $%.6f",
            provider, model_id, msg_id, usage.total_tokens, usage.cost,
        )
        return msg_id

    async def get_message(self, message_id: str) -> Optional[dict]:
        async with get_db() as db:
            cursor = await db.execute("SELECT * FROM messages WHERE id = ?", (message_id,))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def get_cost_summary(self, conversation_id: Optional[str] = None) -> dict:
        """Get cost summary, optionally filtered by conversation."""
        where = "WHERE conversation_id = ?" if conversation_id else ""
        params = (conversation_id,) if conversation_id else ()
        async with get_db() as db:
            cursor = await db.execute(
                f"""SELECT
                    COALESCE(SUM(cost_usd), 0) as total_cost_usd,
                    COALESCE(SUM(prompt_tokens), 0) as total_prompt_tokens,
                    COALESCE(SUM(completion_tokens), 0) as total_completion_tokens
                   FROM cost_log {where}""",
                params,
            )
            row = await cursor.fetchone()

            # Breakdown by provider and model
            breakdown_cursor = await db.execute(
                f"""SELECT provider, model_id,
                          COALESCE(SUM(cost_usd), 0) as cost,
                          COALESCE(SUM(prompt_tokens), 0) as prompt_tokens,
                          COALESCE(SUM(completion_tokens), 0) as completion_tokens
                   FROM cost_log {where}
                   GROUP BY provider, model_id""",
                params,
            )
            breakdown_rows = await breakdown_cursor.fetchall()

            return {
                "conversation_id": conversation_id,
                "total_cost_usd": row["total_cost_usd"] if row else 0.0,
                "total_prompt_tokens": row["total_prompt_tokens"] if row else 0,
                "total_completion_tokens": row["total_completion_tokens"] if row else 0,
                "breakdown": [dict(r) for r in breakdown_rows],
            }
