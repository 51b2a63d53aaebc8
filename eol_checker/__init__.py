"""
EOL Checker - end-of-life status tracking for industrial parts
"""
__version__ = '1.0.0'
