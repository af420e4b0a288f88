from voicerouter.normalizers.status import STATUS_TABLES, STATUS_VOCABULARY, normalize_status

__all__ = ["STATUS_TABLES", "STATUS_VOCABULARY", "normalize_status"]
