"""
Media library: validated uploads, image variants and public file serving.
"""
