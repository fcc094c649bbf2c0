"""
Search Session Automation
Proxy-bound headless browser workers that run search queries and harvest top results
"""

__version__ = "0.1.0"
