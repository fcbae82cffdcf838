"""Models package initialization"""
from .change import ChangeCategory
from .page import ErrorInfo, Page, PageState, id_from_key, is_page_key, page_key

__all__ = [
    'ChangeCategory',
    'ErrorInfo',
    'Page',
    'PageState',
    'id_from_key',
    'is_page_key',
    'page_key',
]
