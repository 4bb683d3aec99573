"""Background job logic run by the ARQ worker"""
