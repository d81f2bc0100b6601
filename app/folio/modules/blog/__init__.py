"""
Blog: posts, tags, markdown rendering, search and the RSS feed.
"""
