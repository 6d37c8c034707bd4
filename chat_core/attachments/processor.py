"""附件摘要处理。

把上传的文件转换为 Attachment：文本类文件读取内容并生成简短摘要，
PDF 与图片目前只给出占位内容和基于大小的摘要。核心只把结果当作上下文文本使用。
"""

from pathlib import Path
from typing import Callable, Dict, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import AdmissionError
from chat_core.domain.session import Attachment


SUMMARY_MAX_LENGTH = 200


def generate_text_summary(content: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """截断到 max_length；若最后一个空格位于 80% 之后，则在单词边界处截断。"""

    if not content or len(content) <= max_length:
        return content
    truncated = content[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.8:
        return truncated[:last_space] + "..."
    return truncated + "..."


def _text_file(path: Path, filename: str, kind: str) -> Attachment:
    content = path.read_text(encoding="utf-8", errors="replace")
    return Attachment(
        id=f"a-{uuid4().hex}",
        filename=filename,
        type=kind,
        size=len(content),
        content=content.strip(),
        summary=generate_text_summary(content),
    )


def _txt(path: Path, filename: str) -> Attachment:
    return _text_file(path, filename, "text")


def _markdown(path: Path, filename: str) -> Attachment:
    return _text_file(path, filename, "markdown")


def _pdf(path: Path, filename: str) -> Attachment:
    return Attachment(
        id=f"a-{uuid4().hex}",
        filename=filename,
        type="pdf",
        size=path.stat().st_size,
        content="[PDF content extraction not implemented]",
        summary=f"PDF file: {filename}",
    )


def _image(path: Path, filename: str) -> Attachment:
    size = path.stat().st_size
    return Attachment(
        id=f"a-{uuid4().hex}",
        filename=filename,
        type="image",
        size=size,
        content="[Image content analysis not implemented]",
        summary=f"Image file: {filename} ({size / 1024:.2f}KB)",
    )


FILE_PROCESSORS: Dict[str, Callable[[Path, str], Attachment]] = {
    ".txt": _txt,
    ".md": _markdown,
    ".pdf": _pdf,
    ".png": _image,
    ".jpg": _image,
    ".jpeg": _image,
}


def is_supported_file(filename: str) -> bool:
    return Path(filename).suffix.lower() in FILE_PROCESSORS


def summarize_attachment(path, filename: Optional[str] = None, max_size: Optional[int] = None) -> Attachment:
    """处理一个本地文件并返回 Attachment。

    Raises:
        AdmissionError: 文件类型不支持、文件不存在或超过大小上限。
    """

    file_path = Path(path)
    name = filename or file_path.name
    ext = Path(name).suffix.lower()
    processor = FILE_PROCESSORS.get(ext)
    if processor is None:
        raise AdmissionError(code="UNSUPPORTED_FILE_TYPE", message=f"Unsupported file type: {ext or name}")
    if not file_path.is_file():
        raise AdmissionError(code="FILE_NOT_FOUND", message=f"File not found: {name}")
    limit = max_size or settings.max_attachment_size
    if file_path.stat().st_size > limit:
        raise AdmissionError(
            code="FILE_TOO_LARGE",
            message=f"File too large. Maximum size is {limit / 1024 / 1024:g}MB",
            http_status=413,
        )
    return processor(file_path, name)
