#!/usr/bin/env python3
"""Standalone web server without the background maintenance tasks"""
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("locker.server:instance", host="0.0.0.0", port=5000, reload=False)
