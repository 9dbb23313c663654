# -*- coding: utf-8 -*-
from src.database import db

from .trust import TrustEvent, TrustScoreRecord, TrustSnapshot
