"""Audio track encoding"""
