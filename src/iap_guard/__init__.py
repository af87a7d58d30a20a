"""App Store 구매 무결성 서비스"""

__version__ = "0.1.0"
