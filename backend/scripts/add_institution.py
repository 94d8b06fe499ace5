#!/usr/bin/env python
"""Register or update an Open Finance institution.

Institutions are reference data; this upserts one by ``--code``.

Usage:
    python -m scripts.add_institution --code BANCOX --name "Banco X" \\
        --api-base-url https://api.bancox.com.br \\
        --authorization-url https://auth.bancox.com.br/authorize \\
        --token-url https://auth.bancox.com.br/token
"""

import argparse

from database import get_session_local
from models import Institution


def main():
    parser = argparse.ArgumentParser(description="Upsert an Open Finance institution.")
    parser.add_argument("--code", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--api-base-url", required=True)
    parser.add_argument("--authorization-url", required=True)
    parser.add_argument("--token-url", required=True)
    parser.add_argument("--revocation-url", default=None)
    parser.add_argument("--no-certificate", action="store_true", help="Institution does not require mTLS")
    parser.add_argument("--inactive", action="store_true")
    args = parser.parse_args()

    db = get_session_local()()
    try:
        institution = db.query(Institution).filter_by(code=args.code).first()
        created = institution is None
        if created:
            institution = Institution(code=args.code)
            db.add(institution)
        institution.name = args.name
        institution.api_base_url = args.api_base_url
        institution.authorization_url = args.authorization_url
        institution.token_url = args.token_url
        institution.revocation_url = args.revocation_url
        institution.certificate_required = not args.no_certificate
        institution.is_active = not args.inactive
        db.commit()
        print(f"{'Created' if created else 'Updated'} institution {args.code} ({institution.id})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
