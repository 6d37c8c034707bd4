"""附件处理协作者。"""

from chat_core.attachments.processor import generate_text_summary, is_supported_file, summarize_attachment

__all__ = ["generate_text_summary", "is_supported_file", "summarize_attachment"]
