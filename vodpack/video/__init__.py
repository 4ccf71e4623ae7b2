"""Video rendition encoding"""
