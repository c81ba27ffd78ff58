from .config_loader import Config, config
from .utils import get_config_section

__all__ = ['Config', 'config', 'get_config_section']
