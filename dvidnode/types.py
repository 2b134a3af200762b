from typing import Union, Optional, List, Tuple, Sequence

CompressType = Optional[Union[str,bool]]
ShapeType = Sequence[int]
OffsetType = Sequence[int]
ChannelsType = Optional[Sequence[int]]
PayloadType = Optional[Union[bytes,bytearray,memoryview,str]]
ResponseType = Tuple[int,bytes]
