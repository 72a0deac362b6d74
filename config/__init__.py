from .config_loader import config, Config

__all__ = ['config', 'Config']
