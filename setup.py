#!/usr/bin/env python3
import os

from setuptools import setup

ver = os.environ.get("PKGVER") or "0.1.0"

setup(
  name = 'userapi',
  packages = [
      'userapi',
      'userapi.types',
      'userapi.alembic',
      'userapi.alembic.versions'
  ],
  version = ver,
  description = 'User records behind OAuth 2.0 token authentication',
  install_requires = [
      'alembic',
      'flask',
      'prometheus_client',
      'sqlalchemy>=1.4',
      'sqlalchemy_utils',
  ],
  extras_require = {
      'test': ['pytest'],
  },
  license = 'AGPL-3.0',
  package_data={
      'userapi': [
          'alembic/script.py.mako',
      ]
  },
  scripts = [
      'userapi-daily',
      'userapi-initdb',
      'userapi-migrate',
  ]
)
