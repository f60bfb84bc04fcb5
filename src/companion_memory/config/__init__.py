from .manager import Config

__all__ = ['Config']
