"""SSE 帧编码与增量解码。

线上格式：每个事件一条记录，UTF-8 编码，形如 ``data: <json>\\n\\n``。
解码器按记录边界（空行）切分，跨读取边界的半帧会被缓存到下一次 feed；
无法解析的帧记录日志后跳过，不影响后续帧。
"""

import codecs
import json
from typing import List, Optional

from chat_core.domain.events import StreamEvent
from chat_core.infrastructure.logging.logger import logger


FRAME_PREFIX = "data:"
RECORD_SEPARATOR = "\n\n"
DONE_MARKER = "[DONE]"


def encode_frame(event: StreamEvent) -> bytes:
    body = json.dumps(event.to_payload(), ensure_ascii=False)
    return f"data: {body}\n\n".encode("utf-8")


class FrameDecoder:
    """把任意切分的字节块还原为 StreamEvent 序列。"""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.frames_seen = 0
        self.frames_skipped = 0

    def feed(self, data: bytes) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(data)
        self._buffer = self._buffer.replace("\r\n", "\n")
        events: List[StreamEvent] = []
        while True:
            idx = self._buffer.find(RECORD_SEPARATOR)
            if idx < 0:
                break
            record = self._buffer[:idx]
            self._buffer = self._buffer[idx + len(RECORD_SEPARATOR):]
            event = self._parse_record(record)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[StreamEvent]:
        """连接结束时处理缓冲区中最后一条没有空行结尾的记录。"""

        self._buffer += self._decoder.decode(b"", final=True)
        record, self._buffer = self._buffer.replace("\r\n", "\n"), ""
        event = self._parse_record(record)
        return [event] if event is not None else []

    def reset(self) -> None:
        """丢弃未完成的半帧，保留计数。"""

        self._decoder.reset()
        self._buffer = ""

    def _parse_record(self, record: str) -> Optional[StreamEvent]:
        data_lines = []
        for line in record.split("\n"):
            if not line.startswith(FRAME_PREFIX):
                # 注释行(":")、event:/id: 字段以及空行都不携带负载
                continue
            value = line[len(FRAME_PREFIX):]
            if value.startswith(" "):
                value = value[1:]
            data_lines.append(value)
        if not data_lines:
            return None
        data = "\n".join(data_lines)
        if data.strip() == DONE_MARKER:
            return None
        self.frames_seen += 1
        try:
            return StreamEvent.from_payload(json.loads(data))
        except ValueError as e:
            # json.JSONDecodeError 也是 ValueError 的子类
            self.frames_skipped += 1
            logger.warning(
                "Skipped malformed frame",
                extra={"extra": {"frame_index": self.frames_seen, "error": str(e), "preview": data[:80]}},
            )
            return None
