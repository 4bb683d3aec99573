"""Coverage domain - worker service areas and the derived ZIP coverage"""
