"""
RoadWatch AI - HTTP API
"""
