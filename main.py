"""
ReplyDesk - Web Server Entry Point
==================================

Run this to start the JSON API:
    python main.py

Then open http://127.0.0.1:8000/docs in your browser.

To draft replies from the command line:
    python run_autoreply.py --business biz-1 --import reviews.csv
"""

import os

import uvicorn


def main():
    """Start the web server."""
    host = os.getenv("REPLYDESK_HOST", "127.0.0.1")
    port = int(os.getenv("REPLYDESK_PORT", "8000"))

    print("\n" + "=" * 50)
    print("   ReplyDesk - Review Reply API")
    print("=" * 50)
    print(f"\n   Starting server at http://{host}:{port}")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "replydesk.web.app:app",
        host=host,
        port=port,
        reload=True,
        log_level="info"
    )


if __name__ == "__main__":
    main()
