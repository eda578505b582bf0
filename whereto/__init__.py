"""WhereTo - group venue planning and voting service"""

__version__ = "0.1.0"
