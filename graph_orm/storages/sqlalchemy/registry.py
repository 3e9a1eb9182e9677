from typing import Dict

import attr
from sqlalchemy import MetaData, Table


@attr.s(auto_attribs=True)
class SaRegistry:
    metadata: MetaData = attr.Factory(MetaData)
    tables: Dict[str, Table] = attr.Factory(dict)
    keys: Dict[str, str] = attr.Factory(dict)
