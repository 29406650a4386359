"""
Storypoint：实时协作的故事点估算服务
"""

__version__ = "1.0.0"
